"""
Best-effort bridge between on-chain stamps and the metadata side-store.

The chain is authoritative. Nothing here may turn a successful on-chain
write into a failure: store outages come back as ``degraded`` outcomes,
and a missing store makes every method a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from filestamp.core.errors import SideStoreDegraded
from filestamp.services.blockchain.schemas import StampStatus
from filestamp.services.db.side_store import SideMetadata, SideStore
from filestamp.services.hashing import normalize_address, normalize_fingerprint

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Metadata store not configured - skipping database save"


@dataclass(frozen=True)
class ReconcileOutcome:
    status: str  # "ok" | "degraded"
    record: Optional[SideMetadata] = None
    error: Optional[SideStoreDegraded] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def warning(self) -> Optional[str]:
        return self.error.message if self.error else None

    @classmethod
    def degraded(cls, message: str) -> "ReconcileOutcome":
        return cls(status="degraded", error=SideStoreDegraded(message))


@dataclass(frozen=True)
class MetadataListing:
    owner: str
    items: list[SideMetadata] = field(default_factory=list)
    warning: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.warning is not None


@dataclass(frozen=True)
class MergedStamp:
    owner: str
    timestamp_ms: int
    is_public: bool
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    tx_id: Optional[str] = None


class MetadataReconciler:
    def __init__(self, store: Optional[SideStore] = None) -> None:
        self.store = store

    @property
    def available(self) -> bool:
        return self.store is not None

    def record_metadata(
        self,
        fingerprint: str,
        owner: str,
        file_name: Optional[str],
        file_size: Optional[int],
        timestamp_ms: int,
        tx_id: Optional[str],
        is_public: bool,
    ) -> ReconcileOutcome:
        """
        Save descriptive metadata for a stamp that already exists on-chain.

        Raises DuplicateStamp when the same owner already recorded this
        fingerprint; every other store failure is returned as ``degraded``.
        """
        if self.store is None:
            logger.info(NOT_CONFIGURED)
            return ReconcileOutcome.degraded(NOT_CONFIGURED)

        meta = SideMetadata(
            fingerprint=normalize_fingerprint(fingerprint),
            owner=normalize_address(owner, name="owner"),
            file_name=file_name,
            file_size=file_size,
            timestamp=datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc),
            tx_id=tx_id,
            is_public=bool(is_public),
        )
        try:
            saved = self.store.insert(meta)
        except SQLAlchemyError as e:
            logger.warning("Database error while saving metadata for %s: %s", meta.fingerprint, e)
            return ReconcileOutcome.degraded("File stamped on blockchain but database save failed")
        return ReconcileOutcome(status="ok", record=saved)

    def lookup_metadata(self, fingerprint: str) -> Optional[SideMetadata]:
        if self.store is None:
            return None
        try:
            return self.store.get(normalize_fingerprint(fingerprint))
        except SQLAlchemyError as e:
            logger.warning("Metadata lookup failed for %s: %s", fingerprint, e)
            return None

    def list_by_owner(self, owner: str) -> MetadataListing:
        owner = normalize_address(owner, name="owner")
        if self.store is None:
            return MetadataListing(owner=owner, warning="Metadata store not configured")
        try:
            return MetadataListing(owner=owner, items=self.store.list_by_owner(owner))
        except SQLAlchemyError as e:
            logger.warning("Failed to fetch stamps for %s: %s", owner, e)
            return MetadataListing(owner=owner, warning="Failed to fetch stamps from metadata store")

    @staticmethod
    def merge(status: StampStatus, meta: Optional[SideMetadata]) -> MergedStamp:
        """
        Combine chain facts with side-store descriptions; chain fields always win.

        A row whose owner contradicts the chain describes someone else's
        stamp, so none of it is used.
        """
        if not status.exists:
            raise ValueError("cannot merge metadata into a missing stamp")
        if meta is not None and meta.owner != status.owner:
            logger.warning(
                "Side-store owner %s disagrees with on-chain owner %s for %s; ignoring stored metadata",
                meta.owner, status.owner, meta.fingerprint,
            )
            meta = None
        return MergedStamp(
            owner=status.owner,
            timestamp_ms=status.timestamp_ms,
            is_public=status.is_public,
            file_name=meta.file_name if meta else None,
            file_size=meta.file_size if meta else None,
            tx_id=meta.tx_id if meta else None,
        )
