from pydantic import BaseModel, Field
from pydantic_extra_types.coordinate import Latitude, Longitude
from typing import Optional

from models import GatewayType

UUID_PATTERN = r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"


class Geolocation(BaseModel):
    latitude: Latitude
    longitude: Longitude


class Gateway(BaseModel):
    name: str
    mac: str
    type: GatewayType = GatewayType.OBSERVE_ZONE
    geolocation: Optional[Geolocation] = None
    is_active: bool = True


class GatewayUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[GatewayType] = None
    geolocation: Optional[Geolocation] = None
    is_active: Optional[bool] = None


class DeviceCreate(BaseModel):
    uuid: str = Field(pattern=UUID_PATTERN)
    major: int = Field(ge=0, le=0xFFFF)
    minor: int = Field(ge=0, le=0xFFFF)
    device_name: Optional[str] = None
    mac_address: Optional[str] = None


class ServiceUuidCreate(BaseModel):
    uuid: str = Field(pattern=UUID_PATTERN)
