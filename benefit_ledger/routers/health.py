from fastapi import APIRouter, Depends

from benefit_ledger.core.config import Settings, get_settings
from benefit_ledger.db.migrate import CURRENT_SCHEMA_VERSION

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness probe")
async def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "version": settings.version,
        "schema_version": CURRENT_SCHEMA_VERSION,
    }
