import asyncio
import os
from collections import defaultdict
from typing import Any, Dict, List, Optional

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.pytest-beacons.db")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool

from app import app
from database import create_tables, get_session_dependency
from models import Activity, Device, ErrorLogRecord, Gateway
from store import get_store

SAMPLE_UUID = "E2C56DB5-DFFB-48D2-B060-D0F5A71096E0"
SAMPLE_RAW = "0201061AFF4C000215E2C56DB5DFFB48D2B060D0F5A71096E000010001C5"
GATEWAY_MAC = "AC233FC0FFEE"

DEVICE_FIELDS = {
    "lastSeen": "last_seen",
    "lastRssi": "last_rssi",
    "batteryLevel": "battery_level",
}


def ibeacon_hex(uuid: str, major: int, minor: int, tx_power: int = -59, prefix: str = "0201061AFF") -> str:
    """Builds advertising data carrying one iBeacon structure."""
    return (
        f"{prefix}4C000215{uuid.replace('-', '')}"
        f"{major:04X}{minor:04X}{tx_power & 0xFF:02X}"
    )


class InMemoryBeaconStore:
    def __init__(self):
        self.gateways: Dict[str, Gateway] = {}
        self.devices: Dict[str, Device] = {}
        self.activities: Dict[str, List[Activity]] = defaultdict(list)
        self.service_uuids: List[str] = []
        self.error_logs: List[ErrorLogRecord] = []
        self.device_updates: List[tuple] = []
        # device id -> exception raised by append_activity
        self.activity_failures: Dict[str, Exception] = {}
        self.error_log_failure: Optional[Exception] = None
        self.allow_list_failure: Optional[Exception] = None
        self.device_lookup_delay = 0.0

    def add_gateway(self, mac_address: str = GATEWAY_MAC, **kwargs: Any) -> Gateway:
        values = dict(id=f"gw-{len(self.gateways) + 1}", name="Front Gate", type="SAFE_ZONE",
                      latitude=25.03, longitude=121.56, is_active=True)
        values.update(kwargs)
        gateway = Gateway(mac_address=mac_address, **values)
        self.gateways[gateway.id] = gateway
        return gateway

    def add_device(self, uuid: str = SAMPLE_UUID.lower(), major: int = 1, minor: int = 1, **kwargs: Any) -> Device:
        values = dict(id=f"dev-{len(self.devices) + 1}", is_active=True)
        values.update(kwargs)
        device = Device(uuid=uuid, major=major, minor=minor, **values)
        self.devices[device.id] = device
        return device

    async def find_active_gateway(self, mac_address: str) -> Optional[Gateway]:
        for gateway in self.gateways.values():
            if gateway.mac_address == mac_address and gateway.is_active:
                return gateway
        return None

    async def find_active_device(self, uuid: str, major: int, minor: int) -> Optional[Device]:
        if self.device_lookup_delay:
            await asyncio.sleep(self.device_lookup_delay)
        for device in self.devices.values():
            if (device.uuid, device.major, device.minor) == (uuid, major, minor) and device.is_active:
                return device
        return None

    async def update_device(self, device_id: str, fields: Dict[str, Any]) -> None:
        self.device_updates.append((device_id, dict(fields)))
        changes = {DEVICE_FIELDS[name]: value for name, value in fields.items() if name in DEVICE_FIELDS}
        self.devices[device_id] = self.devices[device_id].model_copy(update=changes)

    async def append_activity(self, device_id: str, activity: Activity) -> str:
        if device_id in self.activity_failures:
            raise self.activity_failures[device_id]
        self.activities[device_id].append(activity)
        return f"{device_id}-act-{len(self.activities[device_id])}"

    async def list_activities(self, device_id: str, limit: int = 100) -> List[Activity]:
        return list(reversed(self.activities[device_id]))[:limit]

    async def list_active_service_uuids(self) -> List[str]:
        if self.allow_list_failure:
            raise self.allow_list_failure
        return list(self.service_uuids)

    async def append_error_log(self, record: ErrorLogRecord) -> None:
        if self.error_log_failure:
            raise self.error_log_failure
        self.error_logs.append(record)

    @property
    def writes(self) -> int:
        return len(self.device_updates) + sum(len(items) for items in self.activities.values())


@pytest.fixture
def store():
    return InMemoryBeaconStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def sqlite_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'beacons.db'}", poolclass=NullPool)
    asyncio.run(create_tables(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def sql_client(sqlite_engine):
    async def session_override():
        async with AsyncSession(sqlite_engine, expire_on_commit=False) as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session_dependency] = session_override
    yield TestClient(app)
    app.dependency_overrides.clear()
