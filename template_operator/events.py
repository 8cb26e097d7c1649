"""
Observability events posted against the custom resources handled by the
operator. Events are helpful but auxiliary: a failure to record one is logged
and never interrupts a reconciliation.
"""

# Standard
from enum import Enum
import uuid

# First Party
import alog

# Local
from .exceptions import StoreError
from .utils import now_timestamp

log = alog.use_channel("EVENT")

# Longest message the API server accepts for an event
MAX_MESSAGE_LENGTH = 1024
_TRUNCATION_INFIX = "..."


class EventSeverity(Enum):
    """The "type" of a v1 Event"""

    NORMAL = "Normal"
    WARNING = "Warning"


def make_event(resource, severity: EventSeverity, reason: str, message: str, component: str) -> dict:
    """Build a v1 Event manifest about the given custom resource

    Args:
        resource:  CustomResource
            The object the event is about
        severity:  EventSeverity
            Normal or Warning
        reason:  str
            Short machine readable reason
        message:  str
            Human readable message
        component:  str
            The reporting component

    Returns:
        event:  dict
            The Event manifest
    """
    if len(message) > MAX_MESSAGE_LENGTH:
        keep = MAX_MESSAGE_LENGTH - len(_TRUNCATION_INFIX)
        message = message[: keep // 2] + _TRUNCATION_INFIX + message[-(keep - keep // 2) :]

    timestamp = now_timestamp()
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {
            "name": f"{resource.name}.{uuid.uuid4().hex[:16]}",
            "namespace": resource.namespace,
        },
        "type": severity.value,
        "reason": reason,
        "message": message,
        "source": {"component": component},
        "reportingComponent": component,
        "involvedObject": {
            "apiVersion": resource.api_version,
            "kind": resource.kind,
            "name": resource.name,
            "namespace": resource.namespace,
            "uid": resource.uid,
            "resourceVersion": resource.resource_version,
        },
        "firstTimestamp": timestamp,
        "lastTimestamp": timestamp,
        "count": 1,
    }


class EventRecorder:
    """Posts events through a DeployManager"""

    def __init__(self, deploy_manager, component: str):
        self.deploy_manager = deploy_manager
        self.component = component

    def event(self, resource, severity: EventSeverity, reason: str, message: str):
        """Record an event. Store failures are logged and dropped."""
        log.debug2("Event on [%s] %s/%s: %s", resource, severity.value, reason, message)
        try:
            self.deploy_manager.create_event(
                make_event(resource, severity, reason, message, self.component)
            )
        except StoreError as err:
            log.warning("Failed to post an event for [%s]: %s", resource, err)
