"""UUIDs de serviço permitidos (allow-list)"""

import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import ServiceUuidModel, get_session_dependency
from identity import canonical_allowlist_uuid
from models import ServiceUuidsResponse
from schemas import ServiceUuidCreate
from store import BeaconStore, get_store

router = APIRouter()


@router.api_route("", methods=["GET", "POST"], response_model=ServiceUuidsResponse)
async def get_service_uuids(store: BeaconStore = Depends(get_store)):
    """
    Lista os UUIDs de serviço ativos.
    Os apps receptores só escaneiam beacons desses UUIDs.
    """
    uuids = await store.list_active_service_uuids()
    return ServiceUuidsResponse(uuids=uuids, count=len(uuids), timestamp=int(time.time() * 1000))


@router.post("/register", status_code=201)
async def register_service_uuid(
    payload: ServiceUuidCreate, db: AsyncSession = Depends(get_session_dependency)
):
    uuid = canonical_allowlist_uuid(payload.uuid)

    result = await db.execute(select(ServiceUuidModel).where(ServiceUuidModel.uuid == uuid))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="UUID already registered")

    service_uuid = ServiceUuidModel(uuid=uuid, is_active=True)
    db.add(service_uuid)
    await db.flush()
    await db.refresh(service_uuid)
    return service_uuid
