"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""

# Standard
from collections import namedtuple
from contextlib import contextmanager
from typing import List, Optional
import json
import threading

# Third Party
from kubernetes.client.rest import ApiException
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ConflictError as ApiConflictError
from openshift.dynamic.exceptions import DynamicApiError
from openshift.dynamic.exceptions import NotFoundError as ApiNotFoundError
from openshift.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
    StoreTimeoutError,
)
from ..utils import resource_identifiers
from .base import DeployManagerBase

log = alog.use_channel("OSFTD")

# Dry run mode value understood by the API server
DRY_RUN_ALL = "All"

# API server reason for a create that collides with an existing object
ALREADY_EXISTS_REASON = "AlreadyExists"


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    _ResourceIdentifiers = namedtuple(
        "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
    )

    def __init__(self, request_timeout: Optional[float] = None):
        """
        Args:
            request_timeout:  Optional[float]
                Seconds to wait for each API call. Defaults to
                config.store_timeout_seconds.
        """
        self._request_timeout = (
            request_timeout
            if request_timeout is not None
            else config.store_timeout_seconds
        )

        # Set up the client lazily
        log.debug("Initializing openshift client")
        self._client = None
        self._client_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        with self._client_lock:
            if self._client is None:
                self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if resource_handle is None:
            return None
        if not namespace:
            resource_handle.namespaced = False

        try:
            with self._translate_errors(f"get {namespace}/{kind}/{name}"):
                resource = resource_handle.get(
                    name=name,
                    namespace=namespace,
                    _request_timeout=self._request_timeout,
                )
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return None
        return resource.to_dict()

    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> List[dict]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if resource_handle is None:
            return []
        with self._translate_errors(f"list {namespace}/{kind}"):
            resource_list = resource_handle.get(
                namespace=namespace,
                _request_timeout=self._request_timeout,
            )
        return resource_list.to_dict().get("items", [])

    @alog.logged_function(log.debug2)
    def apply(
        self,
        resource_definition: dict,
        field_manager: str,
        force_conflicts: bool = True,
        dry_run: bool = False,
    ) -> dict:
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._require_resource_handle(res_id)

        # Strip out managedFields to let the server set them
        body = dict(resource_definition)
        body["metadata"] = dict(body.get("metadata") or {})
        body["metadata"].pop("managedFields", None)

        log.debug2(
            "Attempting to apply [%s/%s/%s] in %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        kwargs = {}
        if dry_run:
            kwargs["dry_run"] = DRY_RUN_ALL
        with self._translate_errors(f"apply {resource_identifiers(body)}"):
            return resource_handle.server_side_apply(
                body,
                name=res_id.name,
                namespace=res_id.namespace,
                field_manager=field_manager,
                force_conflicts=force_conflicts,
                _request_timeout=self._request_timeout,
                **kwargs,
            ).to_dict()

    @alog.logged_function(log.debug2)
    def delete(self, resource_definition: dict):
        res_id = self._get_resource_identifiers(resource_definition)
        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)

        # A kind the server does not know cannot have instances
        if resource_handle is None:
            raise NotFoundError(
                f"Kind [{res_id.api_version}/{res_id.kind}] not found on the server"
            )
        if not res_id.namespace:
            resource_handle.namespaced = False

        log.debug2(
            "Attempting to delete [%s/%s/%s] from %s",
            res_id.api_version,
            res_id.kind,
            res_id.name,
            res_id.namespace,
        )
        with self._translate_errors(f"delete {resource_identifiers(resource_definition)}"):
            resource_handle.delete(
                name=res_id.name,
                namespace=res_id.namespace,
                _request_timeout=self._request_timeout,
            )

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
        res_id = self._ResourceIdentifiers(api_version, kind, name, namespace)
        resource_handle = self._require_resource_handle(res_id)
        if not namespace:
            resource_handle.namespaced = False

        body = {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": {"name": name},
            "status": status,
        }
        if namespace:
            body["metadata"]["namespace"] = namespace
        if resource_version:
            body["metadata"]["resourceVersion"] = resource_version

        with self._translate_errors(f"set status {namespace}/{kind}/{name}"):
            result = resource_handle.status.server_side_apply(
                body,
                name=name,
                namespace=namespace,
                field_manager=field_manager or config.field_owner,
                force_conflicts=True,
                _request_timeout=self._request_timeout,
            ).to_dict()
        log.debug2(
            "Successfully set the status for [%s/%s] in %s", kind, name, namespace
        )
        return result

    def create_event(self, event: dict):
        res_id = self._get_resource_identifiers(event)
        resource_handle = self._require_resource_handle(res_id)
        with self._translate_errors(f"create event {res_id.name}"):
            resource_handle.create(
                body=event,
                namespace=res_id.namespace,
                _request_timeout=self._request_timeout,
            )

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        try:
            with self._translate_errors(f"lookup kind {api_version}/{kind}"):
                return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError, NotFoundError):
            log.debug(
                "No objects of kind [%s] found or multiple objects matching request found",
                kind,
            )
        return None

    def _require_resource_handle(self, res_id) -> Resource:
        resource_handle = self._get_resource_handle(res_id.kind, res_id.api_version)
        if resource_handle is None:
            raise StoreError(
                "Failed to fetch resource handle for "
                + f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}"
            )
        return resource_handle

    @classmethod
    def _get_resource_identifiers(cls, resource_definition):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        metadata = resource_definition.get("metadata") or {}
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        if None in [api_version, kind, name]:
            raise StoreError(
                "Cannot operate on resource without apiVersion, kind, and name"
            )
        return cls._ResourceIdentifiers(api_version, kind, name, namespace)

    @staticmethod
    def _error_reason(err: DynamicApiError) -> Optional[str]:
        """Pull the machine readable reason out of an API error body"""
        try:
            return json.loads(err.body).get("reason")
        except (TypeError, ValueError, AttributeError):
            return None

    @classmethod
    @contextmanager
    def _translate_errors(cls, description: str):
        """Translate client errors into the operator's StoreError types"""
        try:
            yield
        except ApiNotFoundError as err:
            raise NotFoundError(f"{description}: not found") from err
        except ApiConflictError as err:
            if cls._error_reason(err) == ALREADY_EXISTS_REASON:
                raise AlreadyExistsError(f"{description}: already exists") from err
            raise ConflictError(f"{description}: conflict: {err.summary()}") from err
        except urllib3.exceptions.TimeoutError as err:
            raise StoreTimeoutError(f"{description}: timed out") from err
        except urllib3.exceptions.MaxRetryError as err:
            if isinstance(err.reason, urllib3.exceptions.TimeoutError):
                raise StoreTimeoutError(f"{description}: timed out") from err
            raise StoreError(f"{description}: {err}") from err
        except DynamicApiError as err:
            raise StoreError(f"{description}: {err.summary()}") from err
        except ApiException as err:
            raise StoreError(f"{description}: {err.status} {err.reason}") from err
        except urllib3.exceptions.HTTPError as err:
            raise StoreError(f"{description}: {err}") from err
