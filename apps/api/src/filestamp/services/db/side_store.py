from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from filestamp.core.config import settings
from filestamp.core.errors import DuplicateStamp
from filestamp.db.models import StampRecord
from filestamp.db.session import Base, make_engine, make_session_factory
from filestamp.services.db import crud

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideMetadata:
    fingerprint: str
    owner: str
    file_name: Optional[str]
    file_size: Optional[int]
    timestamp: datetime
    tx_id: Optional[str]
    is_public: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: StampRecord) -> "SideMetadata":
        return cls(
            fingerprint=row.file_hash,
            owner=row.owner_address,
            file_name=row.file_name,
            file_size=row.file_size,
            timestamp=_aware(row.timestamp),
            tx_id=row.tx_id,
            is_public=bool(row.is_public),
            created_at=_aware(row.created_at) if row.created_at else None,
        )


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class SideStore:
    """SQLAlchemy-backed ``stamps`` table, keyed uniquely by fingerprint."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, db_url: str, *, create_tables: bool = True) -> "SideStore":
        engine = make_engine(db_url)
        if create_tables:
            Base.metadata.create_all(bind=engine)
        return cls(make_session_factory(engine))

    def get(self, fingerprint: str) -> SideMetadata | None:
        with self._session_factory() as db:
            row = crud.get_stamp_by_hash(db, fingerprint)
            return SideMetadata.from_row(row) if row else None

    def insert(self, meta: SideMetadata) -> SideMetadata:
        """
        Insert ``meta``. An existing row with the same owner is a duplicate;
        one with a different owner contradicts the chain and is replaced.
        """
        with self._session_factory() as db:
            try:
                existing = crud.get_stamp_by_hash(db, meta.fingerprint)
                if existing is not None:
                    if existing.owner_address == meta.owner:
                        raise DuplicateStamp(
                            "File already stamped",
                            details={
                                "fileHash": existing.file_hash,
                                "ownerAddress": existing.owner_address,
                                "timestamp": _aware(existing.timestamp).isoformat(),
                                "txId": existing.tx_id,
                            },
                        )
                    logger.warning(
                        "Evicting stale metadata for %s: stored owner %s, on-chain owner %s",
                        meta.fingerprint, existing.owner_address, meta.owner,
                    )
                    crud.delete_stamp(db, existing)

                row = crud.create_stamp(
                    db,
                    file_hash=meta.fingerprint,
                    owner_address=meta.owner,
                    file_name=meta.file_name,
                    file_size=meta.file_size,
                    timestamp=meta.timestamp,
                    tx_id=meta.tx_id,
                    is_public=meta.is_public,
                )
                db.commit()
            except IntegrityError as e:
                db.rollback()
                # someone raced us on the unique file_hash
                raise DuplicateStamp("File already stamped", details={"fileHash": meta.fingerprint}) from e
            except Exception:
                db.rollback()
                raise
            return SideMetadata.from_row(row)

    def list_by_owner(self, owner: str) -> list[SideMetadata]:
        with self._session_factory() as db:
            return [SideMetadata.from_row(r) for r in crud.list_stamps_by_owner(db, owner)]


def store_from_settings() -> SideStore | None:
    if not settings.database_url:
        logger.warning("Side-store not configured - metadata features will be disabled")
        return None
    try:
        return SideStore.from_url(settings.database_url)
    except SQLAlchemyError as e:
        logger.warning("Side-store unavailable at startup, metadata disabled: %s", e)
        return None
