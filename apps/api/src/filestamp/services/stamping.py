from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from filestamp.core.errors import StampError, StampNotFound
from filestamp.services.blockchain.gateway import ChainGateway
from filestamp.services.blockchain.schemas import TransactionRecord, ms_to_iso
from filestamp.services.blockchain.writer import StampWriter, build_writer
from filestamp.services.hashing import BytesLike, normalize_address, resolve_fingerprint, to_hex32
from filestamp.services.reconcile import MetadataReconciler

logger = logging.getLogger(__name__)


@dataclass
class StampResult:
    fingerprint: str
    owner: str
    timestamp_ms: int
    tx_hash: str
    is_public: bool
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    warning: Optional[str] = None
    success: bool = True

    @property
    def timestamp_iso(self) -> str:
        return ms_to_iso(self.timestamp_ms)


class StampService:
    """
    Stamping entry points. The chain write (or its confirmation) comes
    first; metadata is reconciled afterwards and can only add a warning.
    """

    def __init__(
        self,
        gateway: ChainGateway,
        reconciler: MetadataReconciler,
        writer_factory: Optional[Callable[[], StampWriter]] = None,
    ) -> None:
        self.gateway = gateway
        self.reconciler = reconciler
        self._writer_factory = writer_factory or (lambda: build_writer(gateway))

    def record_client_stamp(
        self,
        data: BytesLike,
        *,
        owner: str,
        tx_hash: str,
        file_name: Optional[str] = None,
        precomputed: Optional[str] = None,
        pin: Optional[str] = None,
    ) -> StampResult:
        """Record metadata for a stamp the user's own wallet already sent."""
        owner = normalize_address(owner, name="ownerAddress")
        tx_hash = to_hex32(tx_hash)
        fp = resolve_fingerprint(data, pin, precomputed)
        logger.info("Processing file: %s (%d bytes), hash %s", file_name, len(data), fp)

        status = self.gateway.exists(fp)
        if not status.exists:
            raise StampNotFound(
                "Transaction not found on blockchain. Please wait for confirmation.",
                details={"fileHash": fp, "txHash": tx_hash},
            )
        if status.owner != owner:
            logger.warning("Request owner %s differs from on-chain owner %s for %s", owner, status.owner, fp)

        warnings = []
        record = self._receipt_or_none(tx_hash)
        if record is not None and record.stamped is not None and to_hex32(fp) not in record.stamped:
            logger.warning("Transaction %s has no FileStamped event for %s", tx_hash, fp)
            warnings.append(f"Transaction {tx_hash} does not record a stamp for this file")

        # DuplicateStamp from the store surfaces as a conflict here: nothing was written by this request
        outcome = self.reconciler.record_metadata(
            fp, status.owner, file_name, len(data), status.timestamp_ms, tx_hash, status.is_public
        )
        if outcome.warning:
            warnings.append(outcome.warning)
        return StampResult(
            fingerprint=fp,
            owner=status.owner,
            timestamp_ms=status.timestamp_ms,
            tx_hash=tx_hash,
            is_public=status.is_public,
            file_name=file_name,
            file_size=len(data),
            block_number=record.block_number if record else None,
            gas_used=record.gas_used if record else None,
            warning="; ".join(warnings) or None,
        )

    def stamp_with_server_signer(
        self,
        data: BytesLike,
        *,
        file_name: Optional[str] = None,
        is_public: bool = True,
        precomputed: Optional[str] = None,
        pin: Optional[str] = None,
    ) -> StampResult:
        """Sign and send ``stampFile`` with the configured key, then reconcile."""
        writer = self._writer_factory()
        fp = resolve_fingerprint(data, pin, precomputed)

        record = writer.submit(fp, is_public)

        # on-chain proof exists from here on; failures below only add warnings
        warnings = []
        owner = writer.session.address
        timestamp_ms = int(time.time() * 1000)
        try:
            status = self.gateway.exists(fp)
            if status.exists:
                owner, timestamp_ms, is_public = status.owner, status.timestamp_ms, status.is_public
        except StampError as e:
            logger.warning("Post-write read of %s failed: %s", fp, e)
            warnings.append("Could not re-read stamp after confirmation; timestamp is approximate")

        try:
            outcome = self.reconciler.record_metadata(
                fp, owner, file_name, len(data), timestamp_ms, record.tx_hash, is_public
            )
            if outcome.warning:
                warnings.append(outcome.warning)
        except StampError as e:
            logger.warning("Metadata not recorded for %s: %s", fp, e)
            warnings.append(f"File stamped on blockchain but metadata was not saved: {e.message}")

        return StampResult(
            fingerprint=fp,
            owner=owner,
            timestamp_ms=timestamp_ms,
            tx_hash=record.tx_hash,
            is_public=is_public,
            file_name=file_name,
            file_size=len(data),
            block_number=record.block_number,
            gas_used=record.gas_used,
            warning="; ".join(warnings) or None,
        )

    def _receipt_or_none(self, tx_hash: str) -> Optional[TransactionRecord]:
        try:
            return self.gateway.receipt(tx_hash)
        except StampError as e:
            logger.warning("Receipt for %s unavailable: %s", tx_hash, e)
            return None
