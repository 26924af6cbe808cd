"""
Domain error -> HTTP response mapping.
Routes let WarehouseError propagate; this handler renders it with its code and details.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from warehouse.core import errors
from warehouse.core.logging import api_logger, get_request_id

# Most specific first
STATUS_BY_ERROR: list[tuple[type, int]] = [
    (errors.NotFound, 404),
    (errors.InvalidState, 409),
    (errors.InsufficientStock, 409),
    (errors.CarrierNotConfigured, 503),
    (errors.CarrierError, 502),
    (errors.NoRatesAvailable, 502),
    (errors.FulfillmentPersistenceError, 500),
    (errors.ShopifyNotConfigured, 503),
    (errors.UpstreamError, 502),
    (errors.Unauthorized, 401),
    (errors.ValidationFailed, 400),
]


def status_for(exc: errors.WarehouseError) -> int:
    for cls, status_code in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status_code
    return 500


async def warehouse_error_handler(request: Request, exc: errors.WarehouseError) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'
    status_code = status_for(exc)

    log = api_logger.error if status_code >= 500 else api_logger.warning
    log(
        f"{request.method} {request.url.path} -> {status_code} {exc.code}",
        details=exc.details or None,
    )

    content = exc.to_dict()
    content['detail'] = exc.message
    content['request_id'] = request_id
    return JSONResponse(
        status_code=status_code,
        content=content,
        headers={'X-Request-ID': request_id},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', None) or get_request_id() or 'unknown'
    errors_out = [
        {
            'field': '.'.join(str(loc) for loc in error.get('loc', [])),
            'message': error.get('msg', 'Validation error'),
            'type': error.get('type', 'value_error'),
        }
        for error in exc.errors()
    ]
    api_logger.warning(f"{request.method} {request.url.path} -> 422 validation_failed", errors=errors_out)
    return JSONResponse(
        status_code=422,
        content={
            'code': 'validation_failed',
            'detail': 'Validation error',
            'errors': errors_out,
            'request_id': request_id,
        },
        headers={'X-Request-ID': request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(errors.WarehouseError, warehouse_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
