"""Logging filter adding the current request id to every record."""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Set ``record.request_id`` from ``REQUEST_ID_CTX`` ("-" outside a request).

    Records that already carry a ``request_id`` (passed through ``extra``)
    keep it.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
