"""Logging filters for enriching log records with request context.

Adding ``RequestContextFilter`` to a handler puts the request id and the
caller's customer id and region on every record, read from the context
variables set by the gateway middleware. No log statement has to pass them.
"""

from logging import Filter, LogRecord

from .middleware import CUSTOMER_ID_CTX, REGION_CTX, REQUEST_ID_CTX


class RequestContextFilter(Filter):
    """Attach ``request_id``, ``customer_id`` and ``region`` to log records.

    Values default to a hyphen ("-") outside of a request so formatters can
    always reference them.
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        record.customer_id = CUSTOMER_ID_CTX.get()
        record.region = REGION_CTX.get()
        return True
