import json

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from warehouse.core.logging import StructuredLogger, request_id_var
from warehouse.core.middleware import RequestContextMiddleware


def test_record_carries_request_id_and_context():
    log = StructuredLogger('warehouse.test')
    token = request_id_var.set('req-42')
    try:
        record = log.build_record(30, 'Low stock', {'sku': 'WIDGET-1'})
    finally:
        request_id_var.reset(token)

    assert record['request_id'] == 'req-42'
    assert record['level'] == 'WARNING'
    assert record['logger'] == 'warehouse.test'
    assert record['context'] == {'sku': 'WIDGET-1'}


def test_json_and_readable_formats():
    log = StructuredLogger('warehouse.test')
    record = log.build_record(40, 'Label orphaned', {'tracking': '1Z1'}, error=ValueError('boom'))

    log._is_json = True
    parsed = json.loads(log.format(record))
    assert parsed['error'] == {'type': 'ValueError', 'message': 'boom'}
    assert parsed['request_id'] is None

    log._is_json = False
    line = log.format(record)
    assert line.startswith('[-] Label orphaned')
    assert "'tracking': '1Z1'" in line
    assert line.endswith('error=ValueError: boom')


@pytest.fixture
def broken_app():
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get('/boom')
    async def boom():
        raise RuntimeError('unexpected')

    return app


@pytest.mark.anyio
async def test_unhandled_exception_becomes_json_500(broken_app):
    async with AsyncClient(transport=ASGITransport(app=broken_app), base_url='http://test') as ac:
        res = await ac.get('/boom', headers={'X-Request-ID': 'trace-1'})

    assert res.status_code == 500
    assert res.headers['X-Request-ID'] == 'trace-1'
    assert res.json() == {'code': 'internal_error', 'detail': 'Internal server error', 'request_id': 'trace-1'}
    assert request_id_var.get() is None
