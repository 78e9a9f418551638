# apps/api/src/filestamp/api/routes/stamp.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from filestamp.core.errors import InvalidInput
from filestamp.services.stamping import StampResult, StampService
from ..deps import get_stamp_service, read_upload

router = APIRouter(prefix="/stamp", tags=["stamp"])


class StampResponse(BaseModel):
    success: bool = True
    fileHash: str
    ownerAddress: str
    timestamp: str
    txHash: str
    isPublic: bool
    fileName: Optional[str] = None
    fileSize: Optional[int] = None
    blockNumber: Optional[int] = None
    gasUsed: Optional[int] = None
    warning: Optional[str] = None

    @classmethod
    def from_result(cls, res: StampResult) -> "StampResponse":
        return cls(
            success=res.success,
            fileHash=res.fingerprint,
            ownerAddress=res.owner,
            timestamp=res.timestamp_iso,
            txHash=res.tx_hash,
            isPublic=res.is_public,
            fileName=res.file_name,
            fileSize=res.file_size,
            blockNumber=res.block_number,
            gasUsed=res.gas_used,
            warning=res.warning,
        )


@router.post("", response_model=StampResponse, status_code=201, response_model_exclude_none=True)
async def stamp_file(
    file: Optional[UploadFile] = File(None),
    ownerAddress: Optional[str] = Form(None),
    txHash: Optional[str] = Form(None),
    fileHash: Optional[str] = Form(None),
    pin: Optional[str] = Form(None),
    isPublic: bool = Form(True),
    svc: StampService = Depends(get_stamp_service),
):
    """
    Record a stamp.

    With ``txHash`` the user's wallet already sent ``stampFile``; we check
    the chain and save metadata. With neither field the server signer
    stamps the file itself. An owner without a transaction is rejected.
    """
    data = await read_upload(file)
    file_name = file.filename if file else None

    if txHash:
        if not ownerAddress:
            raise InvalidInput("Owner address is required")
        res = await run_in_threadpool(
            svc.record_client_stamp,
            data,
            owner=ownerAddress,
            tx_hash=txHash,
            file_name=file_name,
            precomputed=fileHash,
            pin=pin,
        )
    elif ownerAddress:
        raise InvalidInput("Transaction hash is required")
    else:
        res = await run_in_threadpool(
            svc.stamp_with_server_signer,
            data,
            file_name=file_name,
            is_public=isPublic,
            precomputed=fileHash,
            pin=pin,
        )
    return StampResponse.from_result(res)
