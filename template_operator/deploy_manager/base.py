"""
This defines the base class for all DeployManager types. A DeployManager is the
operator's only view of the object store. Every failure is raised as one of the
typed StoreError subclasses from template_operator.exceptions.
"""

# Standard
from typing import List, Optional
import abc


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which carry out reads and writes against
    the object store
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        """Fetch the current state of a single object

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object or None for no namespace
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            current_state:  Optional[dict]
                The dict representation of the object, or None if not present

        Raises:
            StoreError: The lookup itself failed
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> List[dict]:
        """List all objects of the given kind

        Args:
            kind:  str
                The kind of the objects to list
            namespace:  Optional[str]
                If given, only objects in this namespace are returned
            api_version:  Optional[str]
                The api_version of the resource kind to list

        Returns:
            current_state:  List[dict]
                The dict representation of every matching object
        """

    @abc.abstractmethod
    def apply(
        self,
        resource_definition: dict,
        field_manager: str,
        force_conflicts: bool = True,
        dry_run: bool = False,
    ) -> dict:
        """Create or update a single object with server-side apply semantics.
        Fields not named in the resource definition are left to their current
        owners.

        Args:
            resource_definition:  dict
                The (partial) manifest to apply
            field_manager:  str
                The field manager that owns the applied fields
            force_conflicts:  bool
                Take ownership of fields owned by other managers
            dry_run:  bool
                Validate and resolve the object without persisting it

        Returns:
            resource:  dict
                The store's view of the object after the apply

        Raises:
            AlreadyExistsError, ConflictError, StoreTimeoutError, StoreError
        """

    @abc.abstractmethod
    def delete(self, resource_definition: dict):
        """Delete a single object. Objects carrying finalizers are only marked
        for deletion.

        Args:
            resource_definition:  dict
                A manifest identifying the object to delete

        Raises:
            NotFoundError: The object does not exist
            StoreError: Any other failure
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        field_manager: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> dict:
        """Write the status subresource of an object

        Args:
            kind:  str
                The kind of the object to update
            name:  str
                The name of the object to update
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The full status to write
            api_version:  Optional[str]
                The api_version of the object
            field_manager:  Optional[str]
                The field manager that owns the status fields
            resource_version:  Optional[str]
                If given, the write is rejected with a ConflictError when the
                object has changed since this version was read

        Returns:
            resource:  dict
                The store's view of the object after the write

        Raises:
            NotFoundError, ConflictError, StoreTimeoutError, StoreError
        """

    @abc.abstractmethod
    def create_event(self, event: dict):
        """Record a single v1 Event

        Args:
            event:  dict
                The full Event manifest
        """
