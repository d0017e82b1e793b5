from datetime import datetime, timezone

from sqlalchemy import (JSON, Boolean, Column, DateTime, Float, ForeignKey, Index,
                        Integer, String, Text)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, relationship

from settings import settings

engine = create_async_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

Base = declarative_base()

__all__ = ["GatewayModel", "DeviceModel", "ActivityModel", "ServiceUuidModel", "ErrorLogModel"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GatewayModel(Base):
    """Receptor BLE registrado; mac_address fica sem ':' e em maiúsculas"""

    __tablename__ = "gateways"
    id = Column(Integer, primary_key=True, autoincrement=True)
    mac_address = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False, unique=True)
    type = Column(String, nullable=False, default="OBSERVE_ZONE")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_gateway_mac_active", "mac_address", "is_active"),)


class DeviceModel(Base):
    """Beacon rastreado, identificado por (uuid, major, minor)"""

    __tablename__ = "devices"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String, nullable=False)
    major = Column(Integer, nullable=False)
    minor = Column(Integer, nullable=False)
    device_name = Column(String, nullable=True)
    mac_address = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # String ISO-8601, escrita só pelo pipeline de ingestão
    last_seen = Column(String, nullable=True)
    last_rssi = Column(Integer, nullable=True)
    battery_level = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_device_identity", "uuid", "major", "minor", "is_active"),
    )

    activities = relationship("ActivityModel", back_populates="device", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<DeviceModel(id={self.id}, uuid={self.uuid}, major={self.major}, minor={self.minor})>"


class ActivityModel(Base):
    """Movimentação de um device: 'visto perto do gateway X no instante T'"""

    __tablename__ = "activities"
    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    gateway_id = Column(String, nullable=False)
    gateway_name = Column(String, nullable=False)
    gateway_type = Column(String, nullable=False)
    latitude = Column(Float, nullable=False, default=0)
    longitude = Column(Float, nullable=False, default=0)
    rssi = Column(Integer, nullable=False)
    triggered_notification = Column(Boolean, nullable=False, default=False)
    notification_type = Column(String, nullable=True)
    notification_details = Column(JSON, nullable=True)

    __table_args__ = (Index("idx_activity_device_timestamp", "device_id", "timestamp"),)

    device = relationship("DeviceModel", back_populates="activities")


class ServiceUuidModel(Base):
    """UUID de serviço permitido (allow-list)"""

    __tablename__ = "service_uuids"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String, nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ErrorLogModel(Base):
    __tablename__ = "error_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    function_name = Column(String, nullable=False)
    error_message = Column(Text, nullable=False)
    error_stack = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)


async def create_tables(bind=engine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Dependency para FastAPI
async def get_session_dependency():
    """Dependency para FastAPI que gerencia commit/rollback automaticamente."""
    async with AsyncSession(engine, expire_on_commit=False) as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
