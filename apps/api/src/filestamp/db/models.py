# apps/api/src/filestamp/db/models.py
from __future__ import annotations
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Index, Integer, String, BigInteger

from sqlalchemy.orm import Mapped, mapped_column

from filestamp.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------
# Stamp metadata (non-authoritative cache)
# ---------------------------------------
class StampRecord(Base):
    __tablename__ = "stamps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    file_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)    # lowercased 64-hex
    owner_address: Mapped[str] = mapped_column(String(42), nullable=False)            # EIP-55 checksummed
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)  # chain time
    tx_id: Mapped[str | None] = mapped_column(String(66), nullable=True)              # 0x + 64-hex
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("ix_stamps_owner", "owner_address"),
        Index("ix_stamps_created", "created_at"),
    )
