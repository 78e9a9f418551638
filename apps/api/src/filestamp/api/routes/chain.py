from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from filestamp.services.blockchain.gateway import ChainGateway
from ..deps import get_gateway

router = APIRouter(prefix="/chain", tags=["chain"])


@router.get("/health")
async def chain_health(gateway: ChainGateway = Depends(get_gateway)):
    return await run_in_threadpool(gateway.health)
