from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def ms_to_iso(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class StampStatus:
    """Result of verifyFile(bytes32). Fields other than ``exists`` are None when it is False."""
    exists: bool
    owner: Optional[str] = None
    timestamp_ms: Optional[int] = None
    is_public: Optional[bool] = None


@dataclass(frozen=True)
class TransactionRecord:
    tx_hash: str
    block_number: int
    block_hash: str
    gas_used: int
    status: str  # "success" | "failed"
    # file hashes (0x-hex) from FileStamped events in this receipt; None when not decoded
    stamped: Optional[tuple[str, ...]] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class HistoryEntry:
    tx_hash: str
    file_hash: str
    owner: str
    timestamp_ms: int
    is_public: bool
    block_number: int
    block_hash: str
    gas_used: int
    status: str
    date: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "date", ms_to_iso(self.timestamp_ms))


@dataclass(frozen=True)
class RangePolicy:
    """
    One attempt at a history query.

    ``window`` is how many blocks back from latest to scan when the caller
    gave no start block; ``narrow`` clamps even an explicit start block to
    that window.
    """
    name: str
    window: int
    narrow: bool = False

    def start_block(self, latest: int, requested: Optional[int]) -> int:
        recent = max(0, latest - self.window)
        if not requested:
            return recent
        if self.narrow:
            return max(requested, recent)
        return requested
