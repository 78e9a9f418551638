from functools import lru_cache

from fastapi import Depends, UploadFile

from filestamp.core.config import settings
from filestamp.core.errors import InvalidInput, PayloadTooLarge
from filestamp.services.blockchain.client import Web3Client, load_chain_config
from filestamp.services.blockchain.gateway import ChainGateway
from filestamp.services.db.side_store import SideStore, store_from_settings
from filestamp.services.reconcile import MetadataReconciler
from filestamp.services.stamping import StampService
from filestamp.services.verification import VerificationFlow


# Lazy, process-wide singletons. A misconfiguration is raised per request
# (lru_cache does not memoise exceptions), so fixing .env + restart is enough.
@lru_cache
def get_gateway() -> ChainGateway:
    return ChainGateway(Web3Client(load_chain_config()))


@lru_cache
def get_side_store() -> SideStore | None:
    return store_from_settings()


def get_reconciler() -> MetadataReconciler:
    return MetadataReconciler(get_side_store())


def get_verification_flow(
    gateway: ChainGateway = Depends(get_gateway),
    reconciler: MetadataReconciler = Depends(get_reconciler),
) -> VerificationFlow:
    return VerificationFlow(gateway, reconciler)


def get_stamp_service(
    gateway: ChainGateway = Depends(get_gateway),
    reconciler: MetadataReconciler = Depends(get_reconciler),
) -> StampService:
    return StampService(gateway, reconciler)


async def read_upload(file: UploadFile | None, max_bytes: int | None = None) -> bytes:
    """Read an uploaded file fully, enforcing the upload size limit."""
    if file is None:
        raise InvalidInput("No file uploaded")
    limit = max_bytes if max_bytes is not None else settings.max_upload_bytes
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise PayloadTooLarge(f"File exceeds the {limit // (1024 * 1024)}MB upload limit")
    return data
