"""
Structured Logging Module
Domain loggers that stamp every line with the current request_id.
JSON in production, one readable line otherwise.
"""
import logging
import uuid
import time
import json
from contextvars import ContextVar
from typing import Optional, Any, Dict

from warehouse.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger. Keyword arguments become the
    record's ``context``; ``error=`` adds the exception type and text.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name
        self._is_json = settings.APP_ENV == 'production'

    def build_record(
        self,
        level: int,
        message: str,
        context: Dict[str, Any],
        error: Optional[BaseException] = None,
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
            'level': logging.getLevelName(level),
            'service': settings.APP_NAME,
            'logger': self.name,
            'message': message,
            'request_id': get_request_id(),
        }
        if context:
            record['context'] = context
        if error is not None:
            record['error'] = {'type': type(error).__name__, 'message': str(error)}
        return record

    def format(self, record: Dict[str, Any]) -> str:
        if self._is_json:
            return json.dumps(record, default=str)

        line = f"[{record['request_id'] or '-'}] {record['message']}"
        if 'context' in record:
            line += f" | {record['context']}"
        if 'error' in record:
            line += f" | error={record['error']['type']}: {record['error']['message']}"
        return line

    def _emit(self, level: int, message: str, error: Optional[BaseException], context: Dict[str, Any]):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, self.format(self.build_record(level, message, context, error)))

    def info(self, message: str, **context):
        self._emit(logging.INFO, message, None, context)

    def warning(self, message: str, **context):
        self._emit(logging.WARNING, message, None, context)

    def error(self, message: str, error: Optional[BaseException] = None, **context):
        self._emit(logging.ERROR, message, error, context)

    def critical(self, message: str, error: Optional[BaseException] = None, **context):
        """For states that need an operator, such as a paid label that was never recorded."""
        self._emit(logging.CRITICAL, message, error, context)


def get_logger(name: str = 'warehouse') -> StructuredLogger:
    return StructuredLogger(name)


api_logger = get_logger('warehouse.api')
orders_logger = get_logger('warehouse.orders')
inventory_logger = get_logger('warehouse.inventory')
fulfillment_logger = get_logger('warehouse.fulfillment')
rates_logger = get_logger('warehouse.rates')
carriers_logger = get_logger('warehouse.carriers')
shopify_logger = get_logger('warehouse.shopify')
