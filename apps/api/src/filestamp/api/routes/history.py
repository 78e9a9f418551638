from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from filestamp.services.blockchain.gateway import ChainGateway
from filestamp.services.blockchain.schemas import HistoryEntry
from filestamp.services.hashing import normalize_address
from ..deps import get_gateway

router = APIRouter(prefix="/history", tags=["history"])


class HistoryItem(BaseModel):
    txHash: str
    fileHash: str
    owner: str
    timestamp: int  # ms since epoch
    date: str
    isPublic: bool
    blockNumber: int
    blockHash: str
    gasUsed: str
    status: str

    @classmethod
    def from_entry(cls, e: HistoryEntry) -> "HistoryItem":
        return cls(
            txHash=e.tx_hash,
            fileHash=e.file_hash,
            owner=e.owner,
            timestamp=e.timestamp_ms,
            date=e.date,
            isPublic=e.is_public,
            blockNumber=e.block_number,
            blockHash=e.block_hash,
            gasUsed=str(e.gas_used),
            status=e.status,
        )


class HistoryResponse(BaseModel):
    address: str
    count: int
    transactions: List[HistoryItem]


@router.get("/{address}", response_model=HistoryResponse)
async def get_history(
    address: str,
    fromBlock: Optional[int] = Query(None, ge=0, description="Starting block; defaults to a recent window"),
    gateway: ChainGateway = Depends(get_gateway),
):
    checksum_address = normalize_address(address)
    entries = await run_in_threadpool(gateway.history, checksum_address, fromBlock)
    return HistoryResponse(
        address=checksum_address,
        count=len(entries),
        transactions=[HistoryItem.from_entry(e) for e in entries],
    )
