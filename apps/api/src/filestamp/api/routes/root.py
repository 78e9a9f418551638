from fastapi import APIRouter

from filestamp.core.config import settings

router = APIRouter()


@router.get("/", tags=["root"])
def read_root() -> dict:
    p = settings.api_prefix
    return {
        "status": "ok",
        "message": "FileStamp API",
        "endpoints": {
            "health": "/health",
            "stamp": f"{p}/stamp",
            "verify": f"{p}/verify",
            "stamps": f"{p}/stamps/:address",
            "history": f"{p}/history/:address",
            "chain": f"{p}/chain/health",
        },
    }
