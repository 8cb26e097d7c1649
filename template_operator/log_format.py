"""
Custom logging formats that contain more detailed reconcile logs
"""

# Standard
from contextlib import contextmanager
from typing import Optional
import threading

# First Party
from alog import AlogJsonFormatter
import alog

log = alog.use_channel("LOGFMT")

# Identity of the reconcile running on each worker thread
_reconcile_context = threading.local()


@contextmanager
def reconcile_context(resource_key, reconciliation_id: str):
    """Attach the key and id of a reconcile to every log line emitted on this
    thread while the context is open
    """
    previous = getattr(_reconcile_context, "value", None)
    _reconcile_context.value = (resource_key, reconciliation_id)
    try:
        yield
    finally:
        _reconcile_context.value = previous


def current_reconcile_context() -> Optional[tuple]:
    """Get the (resource_key, reconciliation_id) for this thread, if any"""
    return getattr(_reconcile_context, "value", None)


class OperatorJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter to add the identifiers
    of the resource being reconciled, the reconciliationId, and thread
    information
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "apiVersion",
        "namespace",
        "resourceName",
        "reconciliationId",
    ]

    def format(self, record):
        if context := current_reconcile_context():
            resource_key, reconciliation_id = context
            record.reconciliationId = reconciliation_id
            record.kind = resource_key.kind
            record.apiVersion = resource_key.api_version
            record.namespace = resource_key.namespace
            record.resourceName = resource_key.name

        return super().format(record)
