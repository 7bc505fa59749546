from fastapi import APIRouter, Depends
from pydantic import BaseModel

from chaincredit.api.dependencies import get_services
from chaincredit.schemas.events import SyncStatus
from chaincredit.schemas.network import CacheStats, NetworkStatus
from chaincredit.schemas.startup import StartupStatus
from chaincredit.services.registry import Services

router = APIRouter()


class SyncToggle(BaseModel):
    enabled: bool


@router.get("/startup", response_model=StartupStatus)
async def get_startup_status(services: Services = Depends(get_services)):
    return services.startup.status()


@router.post("/startup/retry", response_model=StartupStatus)
async def retry_startup(services: Services = Depends(get_services)):
    """
    Re-runs the startup phases, for example after fixing configuration.
    """
    return await services.startup.retry()


@router.get("/network", response_model=NetworkStatus)
async def get_network_status(refresh: bool = False, services: Services = Depends(get_services)):
    return await services.network.status(force_refresh=refresh)


@router.get("/cache", response_model=CacheStats)
async def get_cache_stats(services: Services = Depends(get_services)):
    return await services.cache.stats()


@router.delete("/cache", status_code=204)
async def clear_cache(services: Services = Depends(get_services)):
    await services.cache.clear()


@router.get("/sync", response_model=SyncStatus)
async def get_sync_status(services: Services = Depends(get_services)):
    return services.synchronizer.status()


@router.put("/sync", response_model=SyncStatus)
async def set_sync_enabled(toggle: SyncToggle, services: Services = Depends(get_services)):
    services.synchronizer.set_sync_enabled(toggle.enabled)
    return services.synchronizer.status()
