"""
Helper objects to represent a custom resource handled by the operator and the
key used to address it in the store and the work queue
"""

# Standard
from dataclasses import dataclass
from typing import List, Optional
import copy

# Local
from .status import State


@dataclass(frozen=True)
class ResourceKey:
    """Hashable identity of a custom resource"""

    api_version: str
    kind: str
    namespace: Optional[str]
    name: str

    @classmethod
    def from_resource(cls, resource: dict) -> "ResourceKey":
        """Build a key from a raw manifest"""
        metadata = resource.get("metadata", {})
        return cls(
            api_version=resource.get("apiVersion"),
            kind=resource.get("kind"),
            namespace=metadata.get("namespace"),
            name=metadata.get("name"),
        )

    def __str__(self):
        return f"{self.namespace}/{self.api_version}/{self.kind}/{self.name}"


class CustomResource:  # pylint: disable=too-many-instance-attributes
    """Read-only view over a custom resource manifest fetched from the store.
    The view holds a private copy so that later mutations of the source dict
    are not observed.
    """

    def __init__(self, definition: dict):
        self.definition = copy.deepcopy(definition)
        self.kind = self.definition.get("kind")
        self.api_version = self.definition.get("apiVersion")
        self.metadata = self.definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid")

        assert self.kind is not None, "No kind found"
        assert self.api_version is not None, "No apiVersion found"
        assert self.name is not None, "No name found"

    @property
    def key(self) -> ResourceKey:
        return ResourceKey.from_resource(self.definition)

    @property
    def spec(self) -> dict:
        return self.definition.get("spec") or {}

    @property
    def status(self) -> dict:
        return self.definition.get("status") or {}

    @property
    def generation(self) -> int:
        return self.metadata.get("generation", 0)

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    @property
    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    @property
    def finalizers(self) -> List[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def state(self) -> str:
        """The raw state string, "" before the first reconcile"""
        return self.status.get("state") or ""

    @property
    def parsed_state(self) -> Optional[State]:
        """The state as a State, or None if the stored string is not a known
        state
        """
        try:
            return State(self.state)
        except ValueError:
            return None

    def get(self, *args, **kwargs):
        """Pass get calls to the resource definition"""
        return self.definition.get(*args, **kwargs)

    def __str__(self):
        return str(self.key)

    def __repr__(self):
        return f"CustomResource({self})"
