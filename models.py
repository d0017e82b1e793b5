from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GatewayType(str, Enum):
    SCHOOL_ZONE = "SCHOOL_ZONE"
    SAFE_ZONE = "SAFE_ZONE"
    OBSERVE_ZONE = "OBSERVE_ZONE"
    INACTIVE = "INACTIVE"


class ItemStatus(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FILTERED = "filtered"
    ERROR = "error"


class RawReport(CamelModel):
    """Leitura individual enviada pelo gateway (formato JSON-LONG)"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    mac: Optional[str] = None
    raw_data: Optional[str] = None
    rssi: Optional[int] = None
    timestamp: Optional[str] = None
    ble_name: Optional[str] = None
    type: Optional[str] = None

    @field_validator("mac", "raw_data", "timestamp", "ble_name", "type", mode="before")
    @classmethod
    def _text_or_none(cls, value: Any) -> Optional[str]:
        return value if isinstance(value, str) else None

    @field_validator("rssi", mode="before")
    @classmethod
    def _rssi_or_none(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(float(value))
        except (TypeError, ValueError, OverflowError):
            return None


class DecodedBeacon(CamelModel):
    """Campos extraídos de um frame iBeacon"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    uuid: str
    major: int = Field(ge=0, le=0xFFFF)
    minor: int = Field(ge=0, le=0xFFFF)
    tx_power: int = Field(ge=-128, le=127)
    battery_level: Optional[int] = Field(default=None, ge=0, le=255)


class Gateway(CamelModel):
    id: str
    mac_address: str
    name: str
    type: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_active: bool = True


class Device(CamelModel):
    id: str
    uuid: str
    major: int
    minor: int
    is_active: bool = True
    device_name: Optional[str] = None
    mac_address: Optional[str] = None
    last_seen: Optional[str] = None
    last_rssi: Optional[int] = None
    battery_level: Optional[int] = None


class Activity(CamelModel):
    """Movimentação registrada de um device"""

    id: Optional[str] = None
    timestamp: datetime
    gateway_id: str
    gateway_name: str
    gateway_type: str
    latitude: float = 0
    longitude: float = 0
    rssi: int
    triggered_notification: bool = False
    notification_type: Optional[str] = None
    notification_details: Optional[dict] = None


class ErrorLogRecord(CamelModel):
    function_name: str
    error_message: str
    error_stack: str
    payload: Any = None
    timestamp: datetime


class ItemResult(CamelModel):
    mac: str
    status: ItemStatus
    reason: Optional[str] = None


class GatewaySummary(CamelModel):
    mac: str
    name: str
    type: str


class IngestResponse(CamelModel):
    """Resposta do endpoint /ingest"""

    success: bool = True
    message: Optional[str] = None
    gateway: Optional[GatewaySummary] = None
    received: int = 0
    processed: int = 0
    skipped: Optional[int] = None
    filtered_by_uuid: Optional[int] = None
    errors: Optional[int] = None
    processing_time: Optional[int] = Field(default=None, description="Tempo de processamento em ms")
    results: Optional[List[ItemResult]] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str


class ServiceUuidsResponse(BaseModel):
    """Resposta do endpoint /uuids"""

    success: bool = True
    uuids: List[str]
    count: int
    timestamp: int


class DeviceWhitelistItem(CamelModel):
    uuid: str
    major: int
    minor: int
    device_name: Optional[str] = None
    mac_address: str = ""


class DeviceWhitelistResponse(BaseModel):
    """Resposta do endpoint /devices/whitelist"""

    success: bool = True
    devices: List[DeviceWhitelistItem]
    count: int
    timestamp: int


class ActivityHistoryResponse(CamelModel):
    """Resposta do endpoint /devices/{device_id}/activities"""

    device_id: str
    entries: List[Activity]
    total: int
