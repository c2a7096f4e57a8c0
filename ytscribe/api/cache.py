from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ytscribe.api.deps import get_services
from ytscribe.services.registry import ServiceRegistry

router = APIRouter(prefix="/cache", tags=["cache"])


class CacheEvictRequest(BaseModel):
    count: int = Field(ge=1, le=100000)


class CacheEvictResponse(BaseModel):
    ok: bool
    requested: int
    evicted: int


class CacheClearResponse(BaseModel):
    ok: bool
    deleted: int


@router.get("/stats")
async def cache_stats(services: ServiceRegistry = Depends(get_services)):
    return {
        "ok": True,
        "stats": services.get_cache_stats().to_dict(),
        "eviction": {
            "policy": services.eviction.config.policy,
            "active": services.eviction.is_active(),
        },
    }


@router.post("/evict", response_model=CacheEvictResponse)
async def evict_cache(req: CacheEvictRequest, services: ServiceRegistry = Depends(get_services)) -> CacheEvictResponse:
    return CacheEvictResponse(ok=True, requested=req.count, evicted=services.evict_cache(req.count))


@router.post("/evict/auto")
async def run_auto_eviction(services: ServiceRegistry = Depends(get_services)):
    result = await services.run_auto_eviction()
    return {"ok": True, "result": result.to_dict()}


@router.delete("", response_model=CacheClearResponse)
async def clear_cache(services: ServiceRegistry = Depends(get_services)) -> CacheClearResponse:
    return CacheClearResponse(ok=True, deleted=services.clear_cache())
