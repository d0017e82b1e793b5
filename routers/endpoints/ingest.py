"""Endpoint de ingestão dos gateways BLE (formato JSON-LONG)"""

import json
from typing import Any

from fastapi import APIRouter, Depends, Request

from errors import InvalidRequestBody, MethodNotAllowed
from ingestion import IngestionPipeline, IngestRequestContext
from models import ErrorResponse, IngestResponse
from settings import settings
from store import BeaconStore, get_store

router = APIRouter()


async def read_json_body(request: Request) -> Any:
    """Corpo JSON da requisição; ``None`` quando vazio."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    # RecursionError: JSON aninhado demais para o parser
    except (ValueError, RecursionError):
        raise InvalidRequestBody("Invalid JSON body") from None


@router.post(
    "/ingest",
    response_model=IngestResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
)
async def ingest(request: Request, store: BeaconStore = Depends(get_store)):
    """
    Recebe o lote de leituras de um gateway, decodifica os frames iBeacon e
    registra a movimentação dos devices cadastrados.

    O MAC do gateway vem dos headers (x-gateway-mac, gateway-mac,
    x-minew-gateway, mac, device-mac), do parâmetro ?gateway_mac= ou do campo
    gatewayMac do corpo.
    """
    body = await read_json_body(request)
    pipeline = IngestionPipeline(
        store,
        timeout_seconds=settings.INGEST_TIMEOUT_SECONDS,
        default_rssi=settings.DEFAULT_RSSI,
    )
    ctx = IngestRequestContext(headers=request.headers, query=request.query_params, body=body)
    return await pipeline.run(ctx)


@router.api_route(
    "/ingest", methods=["GET", "HEAD", "PUT", "PATCH", "DELETE", "OPTIONS"], include_in_schema=False
)
async def ingest_method_not_allowed():
    raise MethodNotAllowed()
