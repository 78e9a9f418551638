from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from filestamp.core.config import settings
from filestamp.core.errors import (
    DuplicateStamp,
    StampError,
    TransactionRejected,
    TransportTimeout,
)
from filestamp.services.hashing import to_bytes32
from .client import SignerSession, is_transport_error
from .gateway import ChainGateway, record_from_receipt, unavailable_error
from .schemas import TransactionRecord, ms_to_iso

logger = logging.getLogger(__name__)

GAS_HEADROOM = 1.2


def _is_duplicate_revert(e: Exception) -> bool:
    msg = str(e).lower()
    return "already" in msg and ("stamp" in msg or "exist" in msg or "registered" in msg)


class StampWriter:
    """Submits ``stampFile`` transactions signed by an explicit ``SignerSession``."""

    def __init__(
        self,
        gateway: ChainGateway,
        session: SignerSession,
        *,
        max_retries: int | None = None,
        retry_backoff: float | None = None,
        receipt_timeout: float | None = None,
        check_exists: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.session = session
        self.max_retries = settings.write_max_retries if max_retries is None else max_retries
        self.retry_backoff = settings.write_retry_backoff_seconds if retry_backoff is None else retry_backoff
        self.receipt_timeout = settings.tx_receipt_timeout_seconds if receipt_timeout is None else receipt_timeout
        self.check_exists = check_exists
        self._sleep = sleep

    @property
    def w3(self):
        return self.gateway.w3

    def submit(self, fingerprint: str | bytes, is_public: bool = True) -> TransactionRecord:
        file_b32 = to_bytes32(fingerprint, name="fileHash")
        file_hex = file_b32.hex()

        # fail fast instead of paying for a revert
        if self.check_exists:
            status = self.gateway.exists(file_b32)
            if status.exists:
                raise DuplicateStamp(
                    f"File already stamped on {ms_to_iso(status.timestamp_ms)}",
                    details={"fileHash": file_hex, "ownerAddress": status.owner},
                )

        fn = self.gateway.contract.functions.stampFile(file_b32, bool(is_public))
        gas = self._estimate_gas(fn, file_hex)
        tx = self._build_transaction(fn, gas)
        raw_tx, tx_hash = self.session.sign(tx)

        logger.info("Stamping file hash 0x%s (public=%s) from %s", file_hex, bool(is_public), self.session.address)
        rejection = self._send_with_retry(raw_tx, tx_hash)
        if rejection is None:
            logger.info("Transaction sent: %s", Web3.to_hex(tx_hash))
            receipt = self._wait_for_receipt(tx_hash)
        else:
            receipt = self._wait_after_rejected_retry(tx_hash, rejection)

        record = record_from_receipt(receipt)
        if not record.succeeded:
            raise TransactionRejected(
                f"Transaction {record.tx_hash} reverted in block {record.block_number}",
                details={"txHash": record.tx_hash, "blockNumber": record.block_number},
            )
        logger.info("Transaction confirmed in block %d (gas %d)", record.block_number, record.gas_used)
        return record

    # ---- steps ----
    def _estimate_gas(self, fn: Any, file_hex: str) -> int:
        try:
            return int(fn.estimate_gas({"from": self.session.address}))
        except ContractLogicError as e:
            if _is_duplicate_revert(e):
                raise DuplicateStamp(
                    "This file has already been stamped", details={"fileHash": file_hex}
                ) from e
            raise TransactionRejected(f"Contract rejected stamp: {e}") from e
        except Exception as e:
            if _is_duplicate_revert(e):
                raise DuplicateStamp(
                    "This file has already been stamped", details={"fileHash": file_hex}
                ) from e
            raise unavailable_error(e, "gas estimation") from e

    def _build_transaction(self, fn: Any, gas: int) -> dict[str, Any]:
        acct = self.session.address
        try:
            chain_id = self.session.chain_id or int(self.w3.eth.chain_id)
            nonce = self.w3.eth.get_transaction_count(acct, "pending")
            return fn.build_transaction({
                "from": acct,
                "chainId": chain_id,
                "nonce": nonce,
                "gas": int(gas * GAS_HEADROOM),
                "gasPrice": self.w3.eth.gas_price,
            })
        except StampError:
            raise
        except Exception as e:
            raise unavailable_error(e, "transaction build") from e

    def _send_with_retry(self, raw_tx: bytes, tx_hash: bytes) -> Optional[Exception]:
        """
        Send ``raw_tx``, retrying transport failures.

        Returns None once the node accepted it, or the node's rejection when
        it came on a retry: an earlier attempt may already be in the mempool.
        """
        for attempt in range(self.max_retries + 1):
            try:
                self.w3.eth.send_raw_transaction(raw_tx)
                return None
            except Exception as e:
                msg = str(e).lower()
                if "already known" in msg:
                    # an earlier attempt reached the mempool before the transport failed
                    logger.info("Node already has %s; treating as sent", Web3.to_hex(tx_hash))
                    return None
                if _is_duplicate_revert(e):
                    raise DuplicateStamp("This file has already been stamped") from e
                if not is_transport_error(e):
                    if attempt > 0:
                        return e
                    raise TransactionRejected(f"Transaction submission rejected: {e}") from e
                if attempt >= self.max_retries:
                    raise TransportTimeout(
                        f"Transaction submission failed after {attempt + 1} attempts: {e}"
                    ) from e

                delay = self.retry_backoff * (2 ** attempt)
                logger.warning(
                    "send_raw_transaction failed (attempt %d/%d), retrying in %.2fs: %s",
                    attempt + 1, self.max_retries + 1, delay, e,
                )
                self._sleep(delay)
        return None

    def _wait_after_rejected_retry(self, tx_hash: bytes, rejection: Exception) -> Any:
        logger.warning(
            "Retry of %s rejected (%s); waiting for the earlier attempt to be mined",
            Web3.to_hex(tx_hash), rejection,
        )
        try:
            return self._wait_for_receipt(tx_hash)
        except TransportTimeout as e:
            raise TransactionRejected(
                f"Transaction submission rejected: {rejection}",
                details={"txHash": Web3.to_hex(tx_hash)},
            ) from e

    def _wait_for_receipt(self, tx_hash: bytes) -> Any:
        try:
            return self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise TransportTimeout(
                f"Transaction {Web3.to_hex(tx_hash)} not confirmed within {self.receipt_timeout:g}s",
                details={"txHash": Web3.to_hex(tx_hash)},
            ) from e
        except Exception as e:
            raise unavailable_error(e, "confirmation wait") from e


def build_writer(gateway: ChainGateway, session: Optional[SignerSession] = None) -> StampWriter:
    """Writer bound to the configured server signer unless a session is given."""
    if session is None:
        cfg = gateway.client.cfg
        session = SignerSession.from_private_key(cfg.private_key, cfg.chain_id)
    return StampWriter(gateway, session)
