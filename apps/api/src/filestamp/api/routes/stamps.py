from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from filestamp.services.db.side_store import SideMetadata
from filestamp.services.reconcile import MetadataReconciler
from ..deps import get_reconciler

router = APIRouter(prefix="/stamps", tags=["stamps"])


class StampRow(BaseModel):
    fileHash: str
    ownerAddress: str
    fileName: Optional[str] = None
    fileSize: Optional[int] = None
    timestamp: str
    txId: Optional[str] = None
    isPublic: bool
    createdAt: Optional[str] = None

    @classmethod
    def from_meta(cls, m: SideMetadata) -> "StampRow":
        return cls(
            fileHash=m.fingerprint,
            ownerAddress=m.owner,
            fileName=m.file_name,
            fileSize=m.file_size,
            timestamp=m.timestamp.isoformat(),
            txId=m.tx_id,
            isPublic=m.is_public,
            createdAt=m.created_at.isoformat() if m.created_at else None,
        )


class StampsResponse(BaseModel):
    address: str
    count: int
    stamps: List[StampRow]
    degraded: bool = False
    warning: Optional[str] = None


@router.get("/{address}", response_model=StampsResponse)
async def list_stamps(address: str, reconciler: MetadataReconciler = Depends(get_reconciler)):
    listing = await run_in_threadpool(reconciler.list_by_owner, address)
    return StampsResponse(
        address=listing.owner,
        count=len(listing.items),
        stamps=[StampRow.from_meta(m) for m in listing.items],
        degraded=listing.degraded,
        warning=listing.warning,
    )
