import pytest
from httpx import AsyncClient

from warehouse.api.health import healthz

pytestmark = pytest.mark.integration


@pytest.mark.anyio
async def test_healthz():
    assert healthz()["status"] == "ok"


@pytest.mark.anyio
async def test_readyz_db_ok(client: AsyncClient):
    res = await client.get('/readyz')
    assert res.status_code == 200
    assert res.json() == {"status": "ready"}


@pytest.mark.anyio
async def test_request_id_is_echoed(client: AsyncClient):
    res = await client.get('/healthz', headers={'X-Request-ID': 'abc123'})
    assert res.headers['X-Request-ID'] == 'abc123'

    res = await client.get('/healthz')
    assert len(res.headers['X-Request-ID']) == 8
