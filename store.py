"""Acesso ao banco usado pelo pipeline de ingestão.

``BeaconStore`` lista só o que o pipeline precisa; os routers recebem uma
implementação pela dependency :func:`get_store` e os testes trocam por uma em memória.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Protocol

from fastapi import Depends
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database import (ActivityModel, DeviceModel, ErrorLogModel, GatewayModel,
                      ServiceUuidModel, get_session_dependency)
from models import Activity, Device, ErrorLogRecord, Gateway


class BeaconStore(Protocol):
    async def find_active_gateway(self, mac_address: str) -> Optional[Gateway]: ...

    async def find_active_device(self, uuid: str, major: int, minor: int) -> Optional[Device]: ...

    async def update_device(self, device_id: str, fields: Dict[str, Any]) -> None: ...

    async def append_activity(self, device_id: str, activity: Activity) -> str: ...

    async def list_activities(self, device_id: str, limit: int = 100) -> List[Activity]: ...

    async def list_active_service_uuids(self) -> List[str]: ...

    async def append_error_log(self, record: ErrorLogRecord) -> None: ...


def gateway_from_model(row: GatewayModel) -> Gateway:
    return Gateway(
        id=str(row.id),
        mac_address=row.mac_address,
        name=row.name,
        type=row.type,
        latitude=row.latitude,
        longitude=row.longitude,
        is_active=row.is_active,
    )


def device_from_model(row: DeviceModel) -> Device:
    return Device(
        id=str(row.id),
        uuid=row.uuid,
        major=row.major,
        minor=row.minor,
        is_active=row.is_active,
        device_name=row.device_name,
        mac_address=row.mac_address,
        last_seen=row.last_seen,
        last_rssi=row.last_rssi,
        battery_level=row.battery_level,
    )


def activity_from_model(row: ActivityModel) -> Activity:
    return Activity(
        id=str(row.id),
        timestamp=row.timestamp,
        gateway_id=row.gateway_id,
        gateway_name=row.gateway_name,
        gateway_type=row.gateway_type,
        latitude=row.latitude,
        longitude=row.longitude,
        rssi=row.rssi,
        triggered_notification=row.triggered_notification,
        notification_type=row.notification_type,
        notification_details=row.notification_details,
    )


# Campos do device que o pipeline pode escrever
DEVICE_COLUMNS = {
    "lastSeen": "last_seen",
    "lastRssi": "last_rssi",
    "batteryLevel": "battery_level",
    "updatedAt": "updated_at",
}


class SqlAlchemyBeaconStore:
    """``BeaconStore`` sobre uma ``AsyncSession``.

    Cada escrita faz o próprio commit: uma escrita que falha para uma leitura
    não inutiliza a sessão para o resto do lote.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _write(self):
        try:
            yield self.session
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    async def find_active_gateway(self, mac_address: str) -> Optional[Gateway]:
        result = await self.session.execute(
            select(GatewayModel)
            .where(GatewayModel.mac_address == mac_address, GatewayModel.is_active.is_(True))
            .limit(1)
        )
        row = result.scalars().first()
        return gateway_from_model(row) if row else None

    async def find_active_device(self, uuid: str, major: int, minor: int) -> Optional[Device]:
        result = await self.session.execute(
            select(DeviceModel)
            .where(
                DeviceModel.uuid == uuid,
                DeviceModel.major == major,
                DeviceModel.minor == minor,
                DeviceModel.is_active.is_(True),
            )
            .limit(1)
        )
        row = result.scalars().first()
        return device_from_model(row) if row else None

    async def update_device(self, device_id: str, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(DEVICE_COLUMNS)
        if unknown:
            raise ValueError(f"Unsupported device fields: {sorted(unknown)}")

        values = {DEVICE_COLUMNS[name]: value for name, value in fields.items()}
        async with self._write() as session:
            await session.execute(
                update(DeviceModel).where(DeviceModel.id == int(device_id)).values(**values)
            )

    async def append_activity(self, device_id: str, activity: Activity) -> str:
        row = ActivityModel(
            device_id=int(device_id),
            timestamp=activity.timestamp,
            gateway_id=activity.gateway_id,
            gateway_name=activity.gateway_name,
            gateway_type=activity.gateway_type,
            latitude=activity.latitude,
            longitude=activity.longitude,
            rssi=activity.rssi,
            triggered_notification=activity.triggered_notification,
            notification_type=activity.notification_type,
            notification_details=activity.notification_details,
        )
        async with self._write() as session:
            session.add(row)
            await session.flush()
            activity_id = str(row.id)
        return activity_id

    async def list_activities(self, device_id: str, limit: int = 100) -> List[Activity]:
        result = await self.session.execute(
            select(ActivityModel)
            .where(ActivityModel.device_id == int(device_id))
            .order_by(ActivityModel.timestamp.desc(), ActivityModel.id.desc())
            .limit(limit)
        )
        return [activity_from_model(row) for row in result.scalars().all()]

    async def list_active_service_uuids(self) -> List[str]:
        result = await self.session.execute(
            select(ServiceUuidModel.uuid).where(ServiceUuidModel.is_active.is_(True))
        )
        return [uuid for uuid in result.scalars().all() if uuid]

    async def append_error_log(self, record: ErrorLogRecord) -> None:
        # A falha registrada pode ter deixado uma transação aberta
        await self.session.rollback()
        async with self._write() as session:
            session.add(
                ErrorLogModel(
                    function_name=record.function_name,
                    error_message=record.error_message,
                    error_stack=record.error_stack,
                    payload=record.payload,
                    timestamp=record.timestamp,
                )
            )


async def get_store(session: AsyncSession = Depends(get_session_dependency)) -> BeaconStore:
    return SqlAlchemyBeaconStore(session)
