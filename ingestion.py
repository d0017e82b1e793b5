"""Pipeline de ingestão de beacons.

Uma requisição é um lote de um único gateway físico:

    extrai o MAC do gateway -> resolve o gateway -> lê o corpo -> carrega a allow-list
    -> para cada leitura: decodifica -> confere a allow-list -> resolve o device
    -> registra -> agrega

O gateway e a allow-list são resolvidos uma vez e compartilhados por todas as
leituras do lote. As leituras são processadas em sequência; uma leitura que
falha nunca interrompe o lote.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Set

from decoder import decode_ibeacon
from error_log import ErrorLogger
from errors import GatewayNotRegistered, IngestError, IngestFailed, IngestTimeout, MissingGatewayMac
from identity import canonical_allowlist_uuid, canonical_device_uuid, canonical_mac
from models import (Activity, DecodedBeacon, Device, Gateway, GatewaySummary, IngestResponse,
                    ItemResult, ItemStatus, RawReport)
from store import BeaconStore

logger = logging.getLogger(__name__)

# Conferidos nesta ordem, vence o primeiro valor não vazio
GATEWAY_MAC_HEADERS = ("x-gateway-mac", "gateway-mac", "x-minew-gateway", "mac", "device-mac")
GATEWAY_MAC_QUERY_PARAM = "gateway_mac"
GATEWAY_MAC_BODY_FIELD = "gatewayMac"

UNKNOWN_MAC = "unknown"


@dataclass(frozen=True)
class IngestRequestContext:
    """As partes da requisição HTTP que o pipeline usa."""

    headers: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class ReportBatch:
    shape: Literal["array", "wrapped", "single", "empty"]
    items: List[Any]


def parse_report_batch(body: Any) -> ReportBatch:
    """Aceita ``[...]``, ``{"data": [...]}`` ou um único objeto de leitura."""
    if isinstance(body, list):
        return ReportBatch("array", body)
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list):
            return ReportBatch("wrapped", data)
        return ReportBatch("single", [body])
    return ReportBatch("empty", [])


def extract_gateway_mac(ctx: IngestRequestContext) -> Optional[str]:
    """MAC do gateway nos headers, depois na query string, depois no corpo; já canônico."""
    for header in GATEWAY_MAC_HEADERS:
        mac = canonical_mac(ctx.headers.get(header))
        if mac:
            return mac

    mac = canonical_mac(ctx.query.get(GATEWAY_MAC_QUERY_PARAM))
    if mac:
        return mac

    if isinstance(ctx.body, dict):
        mac = canonical_mac(ctx.body.get(GATEWAY_MAC_BODY_FIELD))
        if mac:
            return mac

    return None


def parse_observed_at_ms(timestamp: Optional[str], now_ms: int) -> int:
    """Epoch em milissegundos do timestamp ISO-8601 da leitura; ``now_ms`` se inválido."""
    if not timestamp:
        return now_ms
    try:
        parsed = datetime.fromisoformat(timestamp.strip().replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    except (ValueError, OverflowError):
        return now_ms


def iso_timestamp(moment: datetime) -> str:
    """``2018-01-22T11:10:28.000Z``"""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class AllowListLoader:
    def __init__(self, store: BeaconStore):
        self.store = store

    async def load(self) -> Set[str]:
        uuids = await self.store.list_active_service_uuids()
        allowed = {
            canonical_allowlist_uuid(uuid) for uuid in uuids if isinstance(uuid, str) and uuid.strip()
        }
        logger.info("Loaded %d allowed UUIDs", len(allowed))
        return allowed


def is_allowed(beacon: DecodedBeacon, allowed: Set[str]) -> bool:
    return canonical_allowlist_uuid(beacon.uuid) in allowed


class GatewayResolver:
    def __init__(self, store: BeaconStore):
        self.store = store

    async def resolve(self, mac: str) -> Optional[Gateway]:
        return await self.store.find_active_gateway(canonical_mac(mac))


class DeviceResolver:
    def __init__(self, store: BeaconStore):
        self.store = store

    async def resolve(self, beacon: DecodedBeacon) -> Optional[Device]:
        return await self.store.find_active_device(
            canonical_device_uuid(beacon.uuid), beacon.major, beacon.minor
        )


class ActivityRecorder:
    """Atualiza o último avistamento do device e acrescenta um evento de movimentação.

    As duas escritas são independentes: uma falha na segunda mantém a
    primeira.
    """

    def __init__(self, store: BeaconStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def record(
        self,
        device: Device,
        rssi: int,
        gateway: Gateway,
        observed_at_ms: int,
        battery_level: Optional[int] = None,
    ) -> str:
        observed_at = datetime.fromtimestamp(observed_at_ms / 1000, tz=timezone.utc)

        fields: Dict[str, Any] = {
            "lastSeen": iso_timestamp(observed_at),
            "lastRssi": rssi,
            "updatedAt": self.clock(),
        }
        if battery_level is not None:
            fields["batteryLevel"] = battery_level
        await self.store.update_device(device.id, fields)

        # Beacon não tem GPS, o evento fica na posição do gateway
        activity = Activity(
            timestamp=observed_at,
            gateway_id=gateway.id,
            gateway_name=gateway.name,
            gateway_type=gateway.type,
            latitude=gateway.latitude if gateway.latitude is not None else 0,
            longitude=gateway.longitude if gateway.longitude is not None else 0,
            rssi=rssi,
        )
        activity_id = await self.store.append_activity(device.id, activity)
        logger.debug("Recorded activity %s for device %s via %s", activity_id, device.id, gateway.name)
        return activity_id


@dataclass
class BatchTally:
    results: List[ItemResult] = field(default_factory=list)
    counts: Dict[ItemStatus, int] = field(default_factory=lambda: {status: 0 for status in ItemStatus})

    def add(self, result: ItemResult) -> None:
        self.results.append(result)
        self.counts[result.status] += 1


class IngestionPipeline:
    function_name = "ingest"

    def __init__(
        self,
        store: BeaconStore,
        timeout_seconds: float = 60.0,
        default_rssi: int = -100,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.default_rssi = default_rssi
        self.clock = clock
        self.allow_list = AllowListLoader(store)
        self.gateways = GatewayResolver(store)
        self.devices = DeviceResolver(store)
        self.recorder = ActivityRecorder(store)
        self.error_logger = ErrorLogger(store)

    async def run(self, ctx: IngestRequestContext) -> IngestResponse:
        """Executa o lote inteiro dentro de ``timeout_seconds``.

        Falhas do lote sobem como :class:`errors.IngestError`; qualquer outra
        vai para o error log e é levantada de novo como ``IngestFailed``.
        """
        try:
            return await asyncio.wait_for(self._run(ctx), timeout=self.timeout_seconds)
        except IngestError:
            raise
        except asyncio.TimeoutError:
            error = IngestTimeout(self.timeout_seconds)
            logger.error("Ingestion timed out after %ss", self.timeout_seconds)
            await self.error_logger.log(self.function_name, error, ctx.body)
            raise error from None
        except Exception as exc:
            logger.exception("Unexpected error while ingesting")
            await self.error_logger.log(self.function_name, exc, ctx.body)
            raise IngestFailed() from exc

    async def _run(self, ctx: IngestRequestContext) -> IngestResponse:
        started = time.monotonic()

        gateway_mac = extract_gateway_mac(ctx)
        if not gateway_mac:
            logger.warning("No gateway MAC provided")
            raise MissingGatewayMac()

        gateway = await self.gateways.resolve(gateway_mac)
        if gateway is None:
            logger.warning("Gateway not found: %s", gateway_mac)
            raise GatewayNotRegistered(gateway_mac)
        logger.info(
            "Gateway found: %s (%s) - lat: %s, lng: %s",
            gateway.name, gateway.type, gateway.latitude, gateway.longitude,
        )

        batch = parse_report_batch(ctx.body)
        received = len(batch.items)
        if not received:
            logger.info("No beacon data received from %s", gateway_mac)
            return IngestResponse(message="No beacon data to process", received=0, processed=0)

        allowed = await self.allow_list.load()
        if not allowed:
            logger.warning("No allowed UUIDs configured")
            return IngestResponse(
                message="No allowed UUIDs configured. Please register service UUIDs first.",
                received=received,
                processed=0,
                skipped=received,
            )

        logger.info("Processing %d beacon items (%s body)", received, batch.shape)
        tally = BatchTally()
        for item in batch.items:
            tally.add(await self.process_item(item, gateway, allowed))

        processing_time = int((time.monotonic() - started) * 1000)
        counts = tally.counts
        logger.info(
            "Processing complete: %d processed, %d skipped, %d filtered by UUID, %d errors (%dms)",
            counts[ItemStatus.PROCESSED], counts[ItemStatus.SKIPPED],
            counts[ItemStatus.FILTERED], counts[ItemStatus.ERROR], processing_time,
        )

        return IngestResponse(
            gateway=GatewaySummary(mac=gateway_mac, name=gateway.name, type=gateway.type),
            received=received,
            processed=counts[ItemStatus.PROCESSED],
            skipped=counts[ItemStatus.SKIPPED],
            filtered_by_uuid=counts[ItemStatus.FILTERED],
            errors=counts[ItemStatus.ERROR],
            processing_time=processing_time,
            results=tally.results,
        )

    async def process_item(self, item: Any, gateway: Gateway, allowed: Set[str]) -> ItemResult:
        if not isinstance(item, dict):
            return ItemResult(mac=UNKNOWN_MAC, status=ItemStatus.SKIPPED, reason="Invalid report")

        report = RawReport.model_validate(item)
        mac = report.mac or UNKNOWN_MAC

        if not report.raw_data:
            return ItemResult(mac=mac, status=ItemStatus.SKIPPED, reason="No rawData")

        beacon = decode_ibeacon(report.raw_data)
        if beacon is None:
            return ItemResult(mac=mac, status=ItemStatus.SKIPPED, reason="Not an iBeacon or invalid rawData")

        if not is_allowed(beacon, allowed):
            return ItemResult(mac=mac, status=ItemStatus.FILTERED, reason=f"UUID not in whitelist: {beacon.uuid}")

        observed_at_ms = parse_observed_at_ms(report.timestamp, int(self.clock() * 1000))
        rssi = report.rssi if report.rssi is not None else self.default_rssi

        try:
            device = await self.devices.resolve(beacon)
            if device is None:
                logger.debug(
                    "No active device found for UUID %s, Major %d, Minor %d",
                    canonical_device_uuid(beacon.uuid), beacon.major, beacon.minor,
                )
                return ItemResult(mac=mac, status=ItemStatus.SKIPPED, reason="Device not found")

            await self.recorder.record(device, rssi, gateway, observed_at_ms, beacon.battery_level)
        except Exception as exc:
            logger.warning("Failed to record beacon %s: %s", mac, exc)
            return ItemResult(mac=mac, status=ItemStatus.ERROR, reason=str(exc) or type(exc).__name__)

        return ItemResult(mac=mac, status=ItemStatus.PROCESSED)
