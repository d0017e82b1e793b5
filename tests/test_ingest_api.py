from fastapi.testclient import TestClient

from app import app
from conftest import GATEWAY_MAC, SAMPLE_RAW, SAMPLE_UUID, ibeacon_hex
from settings import settings
from store import get_store


def test_only_post_is_accepted(client):
    response = client.get("/ingest")

    assert response.status_code == 405
    assert response.json() == {"success": False, "error": "Method not allowed. Use POST."}


def test_missing_gateway_mac_is_400(client):
    response = client.post("/ingest", json=[{"mac": "x", "rawData": SAMPLE_RAW}])

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert "gateway" in body["error"].lower()


def test_invalid_json_is_400(client, store):
    store.add_gateway()

    response = client.post(
        "/ingest",
        content=b"{not json",
        headers={"x-gateway-mac": GATEWAY_MAC, "content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON body"}


def test_unregistered_gateway_is_404_with_no_writes(client, store):
    store.add_device()
    store.service_uuids = [SAMPLE_UUID]

    response = client.post(
        "/ingest",
        json=[{"mac": "x", "rawData": SAMPLE_RAW}],
        headers={"x-gateway-mac": "AA:BB:CC:DD:EE:01"},
    )

    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "Gateway not registered: AABBCCDDEE01. Please register the gateway first.",
    }
    assert store.writes == 0


def test_registered_device_is_recorded(client, store):
    gateway = store.add_gateway()
    store.add_device()
    store.service_uuids = [SAMPLE_UUID]
    report = {
        "timestamp": "2018-01-22T11:10:28Z",
        "type": "iBeacon",
        "mac": "AC233F23FFCE",
        "rssi": -59,
        "rawData": SAMPLE_RAW,
    }

    response = client.post("/ingest?gateway_mac=ac:23:3f:c0:ff:ee", json=[report])

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["gateway"] == {"mac": GATEWAY_MAC, "name": "Front Gate", "type": "SAFE_ZONE"}
    assert body["received"] == 1
    assert body["processed"] == 1
    assert body["skipped"] == 0
    assert body["filteredByUuid"] == 0
    assert body["errors"] == 0
    assert isinstance(body["processingTime"], int)
    assert body["results"] == [{"mac": "AC233F23FFCE", "status": "processed"}]

    device = store.devices["dev-1"]
    assert device.last_seen == "2018-01-22T11:10:28.000Z"
    assert device.last_rssi == -59
    [activity] = store.activities["dev-1"]
    assert activity.gateway_id == gateway.id
    assert activity.gateway_name == gateway.name
    assert activity.gateway_type == gateway.type
    assert (activity.latitude, activity.longitude) == (gateway.latitude, gateway.longitude)


def test_inactive_device_is_skipped(client, store):
    store.add_gateway()
    store.add_device(is_active=False)
    store.service_uuids = [SAMPLE_UUID]

    response = client.post(
        "/ingest", json={"mac": "x", "rawData": SAMPLE_RAW}, headers={"gateway-mac": GATEWAY_MAC}
    )

    body = response.json()
    assert response.status_code == 200
    assert body["processed"] == 0
    assert body["skipped"] == 1
    assert body["results"][0]["reason"] == "Device not found"
    assert store.writes == 0


def test_empty_allow_list(client, store):
    store.add_gateway()
    store.add_device()

    response = client.post(
        "/ingest", json={"data": [{"mac": "x", "rawData": SAMPLE_RAW}]}, headers={"x-gateway-mac": GATEWAY_MAC}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["processed"] == 0
    assert body["message"].startswith("No allowed UUIDs configured")
    assert store.writes == 0


def test_empty_body_is_success(client, store):
    store.add_gateway()

    response = client.post("/ingest", headers={"x-gateway-mac": GATEWAY_MAC})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "No beacon data to process",
        "received": 0,
        "processed": 0,
    }


def test_wrapped_body_carries_gateway_mac(client, store):
    store.add_gateway()
    store.add_device(minor=5)
    store.service_uuids = [SAMPLE_UUID.lower()]
    body = {
        "gatewayMac": "AC:23:3F:C0:FF:EE",
        "data": [
            {"mac": "a", "rawData": ibeacon_hex(SAMPLE_UUID, 1, 5)},
            {"mac": "b", "rawData": "nope"},
        ],
    }

    response = client.post("/ingest", json=body)

    payload = response.json()
    assert response.status_code == 200
    assert payload["received"] == 2
    assert payload["processed"] == 1
    assert payload["skipped"] == 1


def test_unexpected_error_is_500(client, store):
    store.add_gateway()
    store.allow_list_failure = RuntimeError("boom")

    response = client.post(
        "/ingest", json=[{"mac": "x", "rawData": SAMPLE_RAW}], headers={"x-gateway-mac": GATEWAY_MAC}
    )

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error. Please check logs."}
    assert len(store.error_logs) == 1


def test_service_uuids_endpoint(client, store):
    store.service_uuids = [SAMPLE_UUID]

    response = client.get("/uuids")

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is True
    assert body["uuids"] == [SAMPLE_UUID]
    assert body["count"] == 1
    assert client.post("/uuids").status_code == 200
    assert client.delete("/uuids").status_code == 405


def test_options_and_head_are_405(client):
    options = client.options("/ingest")
    head = client.head("/ingest")

    assert options.status_code == 405
    assert options.json() == {"success": False, "error": "Method not allowed. Use POST."}
    assert head.status_code == 405


def test_deeply_nested_json_is_400(client, store):
    store.add_gateway()

    response = client.post(
        "/ingest",
        content=b"[" * 100000 + b"]" * 100000,
        headers={"x-gateway-mac": GATEWAY_MAC, "content-type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid JSON body"}
    assert store.writes == 0


def test_failure_outside_pipeline_is_json_500():
    def broken_store():
        raise RuntimeError("database unavailable")

    app.dependency_overrides[get_store] = broken_store
    try:
        client = TestClient(app, raise_server_exceptions=False)
        response = client.post(
            "/ingest", json=[{"mac": "x", "rawData": SAMPLE_RAW}], headers={"x-gateway-mac": GATEWAY_MAC}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"success": False, "error": "Internal server error. Please check logs."}


def test_slow_batch_is_504(client, store, monkeypatch):
    monkeypatch.setattr(settings, "INGEST_TIMEOUT_SECONDS", 0.01)
    store.add_gateway()
    store.add_device()
    store.service_uuids = [SAMPLE_UUID]
    store.device_lookup_delay = 0.5

    response = client.post(
        "/ingest", json=[{"mac": "x", "rawData": SAMPLE_RAW}], headers={"x-gateway-mac": GATEWAY_MAC}
    )

    assert response.status_code == 504
    assert response.json() == {"success": False, "error": "Ingestion did not complete within 0.01 seconds."}
    assert len(store.error_logs) == 1
    assert store.activities == {}
