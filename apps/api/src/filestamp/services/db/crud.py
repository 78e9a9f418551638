from datetime import datetime

from sqlalchemy.orm import Session

from filestamp.db.models import StampRecord


def get_stamp_by_hash(db: Session, file_hash: str) -> StampRecord | None:
    return db.query(StampRecord).filter(StampRecord.file_hash == file_hash.lower()).one_or_none()


def create_stamp(
    db: Session,
    *,
    file_hash: str,
    owner_address: str,
    file_name: str | None,
    file_size: int | None,
    timestamp: datetime,
    tx_id: str | None,
    is_public: bool,
) -> StampRecord:
    obj = StampRecord(
        file_hash=file_hash.lower(),
        owner_address=owner_address,
        file_name=file_name,
        file_size=file_size,
        timestamp=timestamp,
        tx_id=tx_id,
        is_public=is_public,
    )
    db.add(obj)
    db.flush()
    return obj


def delete_stamp(db: Session, row: StampRecord) -> None:
    db.delete(row)
    db.flush()


def list_stamps_by_owner(db: Session, owner_address: str) -> list[StampRecord]:
    return (
        db.query(StampRecord)
        .filter(StampRecord.owner_address == owner_address)
        .order_by(StampRecord.created_at.desc(), StampRecord.id.desc())
        .all()
    )
