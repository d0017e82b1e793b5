"""Endpoints de devices: cadastro, whitelist e histórico de movimentação"""

import time

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import DeviceModel, get_session_dependency
from identity import canonical_device_uuid, canonical_mac
from models import ActivityHistoryResponse, DeviceWhitelistItem, DeviceWhitelistResponse
from schemas import DeviceCreate
from store import BeaconStore, get_store

router = APIRouter()


@router.post("/", status_code=201)
async def create_device(device: DeviceCreate, db: AsyncSession = Depends(get_session_dependency)):
    uuid = canonical_device_uuid(device.uuid)

    result = await db.execute(
        select(DeviceModel).where(
            DeviceModel.uuid == uuid,
            DeviceModel.major == device.major,
            DeviceModel.minor == device.minor,
            DeviceModel.is_active.is_(True),
        )
    )
    if result.scalars().first():
        raise HTTPException(status_code=409, detail="Device already exists")

    new_device = DeviceModel(
        uuid=uuid,
        major=device.major,
        minor=device.minor,
        device_name=device.device_name,
        mac_address=canonical_mac(device.mac_address) or None,
        is_active=True,
    )
    db.add(new_device)
    await db.flush()
    await db.refresh(new_device)
    return new_device


@router.api_route("/whitelist", methods=["GET", "POST"], response_model=DeviceWhitelistResponse)
async def get_device_whitelist(db: AsyncSession = Depends(get_session_dependency)):
    """
    Lista todos os devices ativos.
    Usado pelos apps receptores para filtrar quais beacons enviar.
    """
    result = await db.execute(
        select(DeviceModel).where(DeviceModel.is_active.is_(True)).order_by(DeviceModel.id)
    )
    devices = [
        DeviceWhitelistItem(
            uuid=row.uuid,
            major=row.major or 0,
            minor=row.minor or 0,
            device_name=row.device_name,
            mac_address=row.mac_address or "",
        )
        for row in result.scalars().all()
        if row.uuid
    ]
    return DeviceWhitelistResponse(devices=devices, count=len(devices), timestamp=int(time.time() * 1000))


@router.get("/{device_id}/activities", response_model=ActivityHistoryResponse)
async def get_device_activities(
    device_id: int,
    limit: int = Query(default=100, ge=1, le=1000, description="Número máximo de entradas"),
    db: AsyncSession = Depends(get_session_dependency),
    store: BeaconStore = Depends(get_store),
):
    """Histórico de movimentação de um device, mais recente primeiro."""
    if await db.get(DeviceModel, device_id) is None:
        raise HTTPException(status_code=404, detail="Device not found")

    entries = await store.list_activities(str(device_id), limit=limit)
    return ActivityHistoryResponse(device_id=str(device_id), entries=entries, total=len(entries))
