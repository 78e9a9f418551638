from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from filestamp.services.verification import VerificationFlow
from ..deps import get_verification_flow, read_upload

router = APIRouter(prefix="/verify", tags=["verify"])


class VerifyResponse(BaseModel):
    exists: bool
    fileHash: str
    message: Optional[str] = None
    ownerAddress: Optional[str] = None
    timestamp: Optional[str] = None
    isPublic: Optional[bool] = None
    fileName: Optional[str] = None
    txId: Optional[str] = None


@router.post("", response_model=VerifyResponse)
async def verify_file(
    file: Optional[UploadFile] = File(None),
    pin: Optional[str] = Form(None),
    fileHash: Optional[str] = Form(None),
    flow: VerificationFlow = Depends(get_verification_flow),
):
    data = await read_upload(file)
    res = await run_in_threadpool(
        flow.verify,
        data,
        pin=pin,
        precomputed=fileHash,
        file_name=file.filename if file else None,
    )

    if not res.exists:
        return VerifyResponse(exists=False, fileHash=res.fingerprint, message="File not found on blockchain")

    return VerifyResponse(
        exists=True,
        fileHash=res.fingerprint,
        ownerAddress=res.owner,
        timestamp=res.timestamp_iso,
        isPublic=res.is_public,
        fileName=res.file_name,
        txId=res.tx_id,
    )
