import httpx
import pytest

from app.core.exceptions import ExternalProviderError
from app.inventory.client import ProviderConnection, fetch_inventory_pages
from app.models.inventory import ConnectionStatus
from app.services import inventory_service

ENDPOINT = "https://rxware.example.test/api"


@pytest.fixture
def remote_provider(db):
    return inventory_service.create_provider(
        db,
        name="RxWare East",
        provider_type="rxware",
        api_endpoint=ENDPOINT,
        api_key="secret-key",
    )


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _rxware_page(*items, total=None):
    return {"data": list(items), "totalCount": total if total is not None else len(items)}


def test_sync_ingests_remote_inventory(db, remote_provider):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(
            200,
            json=_rxware_page(
                {"inventoryId": "R1", "productName": "Lisinopril 10mg", "quantityOnHand": 30},
                {"inventoryId": "R2", "productName": "Metformin 500mg", "quantityOnHand": 0},
            ),
        )

    result = inventory_service.sync_provider(db, remote_provider.id, client=_client(handler))

    assert result.success is True
    assert result.item_count == 2
    assert result.generation == 1

    request = seen[0]
    assert request.url.path == "/api/inventory"
    assert request.url.params["page"] == "1"
    assert request.headers["x-api-key"] == "secret-key"

    items = {i.external_id: i for i in inventory_service.list_provider_items(db, remote_provider.id)}
    assert items["R1"].quantity == 30 and items["R1"].in_stock is True
    assert items["R2"].in_stock is False
    assert items["R1"].raw_data["productName"] == "Lisinopril 10mg"

    provider = inventory_service.get_provider(db, remote_provider.id)
    assert provider.connection_status == ConnectionStatus.CONNECTED.value
    assert provider.last_error is None


def test_sync_failure_marks_provider_and_keeps_snapshot(db, remote_provider):
    inventory_service.ingest_snapshot(
        db,
        remote_provider.id,
        [],
    )

    def handler(request):
        return httpx.Response(503, json={"error": "maintenance"})

    result = inventory_service.sync_provider(db, remote_provider.id, client=_client(handler))

    assert result.success is False
    assert "503" in result.error
    provider = inventory_service.get_provider(db, remote_provider.id)
    assert provider.connection_status == ConnectionStatus.ERROR.value
    assert "503" in provider.last_error
    assert provider.sync_generation == 1
    assert provider.last_sync_date is not None


def test_sync_timeout_is_recorded(db, remote_provider):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    result = inventory_service.sync_provider(db, remote_provider.id, client=_client(handler))

    assert result.success is False
    assert "timed out" in result.error
    assert inventory_service.get_provider(db, remote_provider.id).connection_status == ConnectionStatus.ERROR.value


def test_sync_invalid_json_is_recorded(db, remote_provider):
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    result = inventory_service.sync_provider(db, remote_provider.id, client=_client(handler))

    assert result.success is False
    assert "invalid JSON" in result.error


def test_inactive_provider_is_not_fetched(db):
    provider = inventory_service.create_provider(
        db, name="Paused", provider_type="rxware", api_endpoint=ENDPOINT, is_active=False
    )

    def handler(request):
        raise AssertionError("inactive providers must not be contacted")

    result = inventory_service.sync_provider(db, provider.id, client=_client(handler))

    assert result.success is False
    assert inventory_service.get_provider(db, provider.id).connection_status == ConnectionStatus.DISCONNECTED.value


def test_fetch_follows_pages_until_total():
    def handler(request):
        page = int(request.url.params["page"])
        limit = int(request.url.params["limit"])
        start = (page - 1) * limit
        ids = [n for n in range(start, min(start + limit, 5))]
        return httpx.Response(
            200,
            json=_rxware_page(*({"inventoryId": str(n), "productName": f"Drug {n}"} for n in ids), total=5),
        )

    conn = ProviderConnection(1, "RxWare", "rxware", ENDPOINT, None)
    items = fetch_inventory_pages(conn, page_size=2, timeout=1.0, client=_client(handler))

    assert [i["inventoryId"] for i in items] == ["0", "1", "2", "3", "4"]


def test_fetch_without_endpoint_raises():
    conn = ProviderConnection(1, "Nowhere", "rxware", None, None)

    with pytest.raises(ExternalProviderError):
        fetch_inventory_pages(conn, page_size=10, timeout=1.0, client=_client(lambda r: httpx.Response(200)))


def test_check_connection(db, remote_provider):
    def healthy(request):
        assert request.url.path == "/api/status"
        return httpx.Response(200, json={"status": "ok"})

    provider = inventory_service.check_provider_connection(db, remote_provider.id, client=_client(healthy))
    assert provider.connection_status == ConnectionStatus.CONNECTED.value

    def down(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = inventory_service.check_provider_connection(db, remote_provider.id, client=_client(down))
    assert provider.connection_status == ConnectionStatus.ERROR.value
    assert "request failed" in provider.last_error


def test_sync_job_skips_when_already_running(remote_provider):
    from app.background.workers import provider_sync_lock_name, sync_provider_job
    from app.core.redis import named_lock

    with named_lock(provider_sync_lock_name(remote_provider.id)):
        assert sync_provider_job(remote_provider.id) is None
