from fastapi import APIRouter

from routers.endpoints.devices import router as devices_router
from routers.endpoints.gateway import router as gateway_router
from routers.endpoints.ingest import router as ingest_router
from routers.endpoints.uuids import router as uuids_router

router = APIRouter()

router.include_router(ingest_router, tags=["ingest"])
router.include_router(gateway_router, prefix="/gateway", tags=["gateway"])
router.include_router(devices_router, prefix="/devices", tags=["devices"])
router.include_router(uuids_router, prefix="/uuids", tags=["uuids"])
