from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import replace
from typing import Any, Callable, Optional, Sequence

from web3.exceptions import TransactionNotFound
from web3.logs import DISCARD

from filestamp.core.config import Settings, settings
from filestamp.core.errors import (
    GatewayMisconfigured,
    GatewayUnavailable,
    HistoryUnavailable,
    StampNotFound,
    TransportTimeout,
)
from filestamp.services.hashing import normalize_address, to_bytes32
from .client import SignerSession, Web3Client, is_transport_error
from .schemas import HistoryEntry, RangePolicy, StampStatus, TransactionRecord

logger = logging.getLogger(__name__)


def default_range_policies(cfg: Settings | None = None) -> tuple[RangePolicy, ...]:
    """Full requested range first, then a narrow recent window."""
    cfg = cfg or settings
    return (
        RangePolicy("requested", cfg.history_default_window),
        RangePolicy("recent", cfg.history_fallback_window, narrow=True),
    )


HISTORY_RANGE_POLICIES = default_range_policies()


def _hex(v: Any) -> str:
    if isinstance(v, (bytes, bytearray)):
        return "0x" + bytes(v).hex()
    s = str(v).strip().lower()
    return s if s.startswith("0x") else "0x" + s


def unavailable_error(e: Exception, what: str) -> GatewayUnavailable:
    if is_transport_error(e):
        return TransportTimeout(f"{what} timed out: {e}")
    return GatewayUnavailable(f"{what} failed: {e}")


def record_from_receipt(receipt: Any) -> TransactionRecord:
    return TransactionRecord(
        tx_hash=_hex(receipt["transactionHash"]),
        block_number=int(receipt["blockNumber"]),
        block_hash=_hex(receipt["blockHash"]),
        gas_used=int(receipt["gasUsed"]),
        status="success" if int(receipt["status"]) == 1 else "failed",
    )


class ChainGateway:
    """Read-only view of the FileStamp contract."""

    def __init__(
        self,
        client: Optional[Web3Client] = None,
        *,
        history_timeout: float | None = None,
        policies: Sequence[RangePolicy] | None = None,
    ) -> None:
        self.client = client or Web3Client()
        self.history_timeout = history_timeout if history_timeout is not None else settings.history_timeout_seconds
        self.policies = tuple(policies) if policies else HISTORY_RANGE_POLICIES

    @property
    def w3(self):
        return self.client.w3

    @property
    def contract(self):
        return self.client.contract

    def health(self) -> dict:
        cfg = self.client.cfg
        connected = self.client.is_connected()
        try:
            signer = SignerSession.from_private_key(cfg.private_key, cfg.chain_id).address
        except GatewayMisconfigured:
            signer = None
        return {
            "connected": connected,
            "chain_id": self.client.get_chain_id() if connected else cfg.chain_id,
            "contract": cfg.contract_address,
            "has_signer": signer is not None,
            "signer": signer,
        }

    # ---- calls ----
    def exists(self, fingerprint: str | bytes) -> StampStatus:
        file_b32 = to_bytes32(fingerprint, name="fileHash")
        try:
            exists, owner, ts, is_public = self.contract.functions.verifyFile(file_b32).call()
        except Exception as e:
            raise unavailable_error(e, "verifyFile call") from e

        if not exists:
            return StampStatus(exists=False)
        return StampStatus(
            exists=True,
            owner=normalize_address(str(owner), name="owner"),
            timestamp_ms=int(ts) * 1000,
            is_public=bool(is_public),
        )

    def receipt(self, tx_hash: str) -> TransactionRecord:
        tx_b32 = to_bytes32(tx_hash, name="txHash")
        try:
            rec = self.w3.eth.get_transaction_receipt(tx_b32)
        except TransactionNotFound as e:
            raise StampNotFound(f"Transaction {_hex(tx_b32)} not found on chain") from e
        except Exception as e:
            raise unavailable_error(e, "receipt lookup") from e
        return replace(record_from_receipt(rec), stamped=self._stamped_hashes(rec))

    def _stamped_hashes(self, receipt: Any) -> Optional[tuple[str, ...]]:
        try:
            events = self.contract.events.FileStamped().process_receipt(receipt, errors=DISCARD)
        except Exception as e:
            logger.warning("Could not decode FileStamped events from %s: %s", _hex(receipt["transactionHash"]), e)
            return None
        return tuple(_hex(ev["args"]["fileHash"]) for ev in events)

    # ---- history ----
    def history(self, owner: str, from_block: int | None = None) -> list[HistoryEntry]:
        """
        FileStamped events for ``owner``, newest first.

        Range policies are tried in order; only a transport failure
        (deadline, timeout, RPC range limit) advances to the next one.
        """
        owner = normalize_address(owner, name="owner")
        last_error: Exception | None = None

        for attempt, policy in enumerate(self.policies):
            try:
                entries = self._run_with_deadline(self._fetch_window, owner, policy, from_block)
            except Exception as e:
                if not is_transport_error(e):
                    raise HistoryUnavailable(f"Unable to fetch transaction history: {e}") from e
                last_error = e
                logger.warning("History query (%s window) for %s failed: %s", policy.name, owner, e)
                continue

            if attempt:
                logger.info("Found %d recent transactions for %s (%s window)", len(entries), owner, policy.name)
            else:
                logger.info("Found %d transactions for %s", len(entries), owner)
            return sorted(entries, key=lambda e: (e.timestamp_ms, e.block_number), reverse=True)

        raise HistoryUnavailable(
            "Unable to fetch transaction history. The blockchain query is taking too long. "
            "Please try again later."
        ) from last_error

    def _run_with_deadline(self, fn: Callable[..., list[HistoryEntry]], *args: Any) -> list[HistoryEntry]:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="history")
        future = executor.submit(fn, *args)
        try:
            return future.result(timeout=self.history_timeout)
        except FuturesTimeout as e:
            raise TransportTimeout(f"Query timeout: request took longer than {self.history_timeout:g}s") from e
        finally:
            # an overrunning query is abandoned, not joined
            executor.shutdown(wait=False, cancel_futures=True)

    def _fetch_window(self, owner: str, policy: RangePolicy, from_block: int | None) -> list[HistoryEntry]:
        latest = int(self.w3.eth.block_number)
        start = policy.start_block(latest, from_block)
        logger.debug("Querying FileStamped for %s from block %d to %d (%s)", owner, start, latest, policy.name)

        events = self.contract.events.FileStamped.get_logs(
            argument_filters={"owner": owner},
            from_block=start,
            to_block="latest",
        )

        receipts: dict[str, TransactionRecord] = {}
        entries = []
        for ev in events:
            tx_hash = _hex(ev["transactionHash"])
            if tx_hash not in receipts:
                receipts[tx_hash] = record_from_receipt(self.w3.eth.get_transaction_receipt(ev["transactionHash"]))
            rec = receipts[tx_hash]
            args = ev["args"]
            entries.append(
                HistoryEntry(
                    tx_hash=tx_hash,
                    file_hash=_hex(args["fileHash"]),
                    owner=normalize_address(str(args["owner"]), name="owner"),
                    timestamp_ms=int(args["timestamp"]) * 1000,
                    is_public=bool(args["isPublic"]),
                    block_number=int(ev["blockNumber"]),
                    block_hash=_hex(ev["blockHash"]),
                    gas_used=rec.gas_used,
                    status=rec.status,
                )
            )
        return entries
