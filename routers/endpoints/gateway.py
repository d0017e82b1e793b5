from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import GatewayModel, get_session_dependency
from identity import canonical_mac
from schemas import Gateway, GatewayUpdate

router = APIRouter()


# Util
async def get_gateway(mac: str, db: AsyncSession) -> GatewayModel:
    """Busca um gateway pelo MAC"""
    mac = canonical_mac(mac)
    result = await db.execute(select(GatewayModel).where(GatewayModel.mac_address == mac))
    gateway = result.scalar_one_or_none()
    if not gateway:
        raise HTTPException(status_code=404, detail="Gateway not found")
    return gateway


@router.post("/", status_code=201)
async def create_gateway(
    gateway: Gateway, db: AsyncSession = Depends(get_session_dependency)
):
    mac = canonical_mac(gateway.mac)
    if not mac:
        raise HTTPException(status_code=422, detail="Invalid gateway MAC")

    result = await db.execute(
        select(GatewayModel).where(
            or_(GatewayModel.mac_address == mac, GatewayModel.name == gateway.name)
        )
    )
    if result.scalars().first():
        raise HTTPException(status_code=409, detail="Gateway already exists")

    new_gateway = GatewayModel(
        mac_address=mac,
        name=gateway.name,
        type=gateway.type.value,
        latitude=gateway.geolocation.latitude if gateway.geolocation else None,
        longitude=gateway.geolocation.longitude if gateway.geolocation else None,
        is_active=gateway.is_active,
    )
    db.add(new_gateway)
    await db.flush()  # Flush para garantir que o ID seja gerado
    await db.refresh(new_gateway)
    return new_gateway


@router.put("/{mac}")
async def update_gateway(
    mac: str, gateway: GatewayUpdate, db: AsyncSession = Depends(get_session_dependency)
):
    existing_gateway = await get_gateway(mac, db)

    # Atualiza apenas os campos fornecidos
    if gateway.name is not None and existing_gateway.name != gateway.name:
        existing_gateway.name = gateway.name

    if gateway.type is not None:
        existing_gateway.type = gateway.type.value

    if gateway.geolocation is not None:
        existing_gateway.latitude = gateway.geolocation.latitude
        existing_gateway.longitude = gateway.geolocation.longitude

    if gateway.is_active is not None:
        existing_gateway.is_active = gateway.is_active

    # Flush para garantir que as mudanças sejam aplicadas antes do commit automático
    await db.flush()

    return existing_gateway


@router.get("/")
async def get_gateways(db: AsyncSession = Depends(get_session_dependency)):
    """Lista os gateways ativos"""
    gateways = await db.execute(
        select(GatewayModel).where(GatewayModel.is_active.is_(True)).order_by(GatewayModel.name)
    )
    return gateways.scalars().all()


@router.get("/{mac}")
async def get_gateway_by_mac(mac: str, db: AsyncSession = Depends(get_session_dependency)):
    return await get_gateway(mac, db)
