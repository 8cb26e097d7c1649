"""
Renderer that templates a packaged helm chart named by the resource's
spec.chartPath with a fixed value overlay
"""

# Standard
from typing import List, Optional
import os
import shlex
import subprocess
import tempfile

# Third Party
import yaml

# First Party
import aconfig
import alog

# Local
from .. import config, constants
from ..exceptions import RenderError, StoreError
from ..utils import resource_identifiers
from .base import RenderedSet, RendererBase, parse_manifest

log = alog.use_channel("RNDR")

# Metadata the store fills in on a dry run which must not be applied back
_SERVER_POPULATED_METADATA = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
)


class TemplatedPackageRenderer(RendererBase):
    """Renders the chart client-side with `helm template`. Unless configured
    for client-only rendering, every rendered object is also dry-run applied
    against the store and the store's resolved version is returned instead.
    """

    def __init__(
        self,
        deploy_manager=None,
        helm_config: Optional[aconfig.Config] = None,
        field_owner: Optional[str] = None,
        path_field: str = constants.CHART_PATH_FIELD,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                The store used for server-side dry runs. Required unless
                rendering client-only.
            helm_config:  Optional[aconfig.Config]
                Overrides for the helm section of the library config
            field_owner:  Optional[str]
                Field manager for dry-run applies
            path_field:  str
                The spec field holding the chart path
        """
        self.deploy_manager = deploy_manager
        self.helm_config = helm_config or config.helm
        self.field_owner = field_owner or config.field_owner
        self.path_field = path_field
        assert (
            self.helm_config.client_only or self.deploy_manager is not None
        ), "A deploy_manager is required for server-side dry runs"

    def render(self, resource) -> RenderedSet:
        chart_path = resource.spec.get(self.path_field)
        if not chart_path:
            raise RenderError(f"{resource} has no spec.{self.path_field}")
        if not os.path.exists(chart_path):
            raise RenderError(f"Chart path [{chart_path}] does not exist")

        rendered = parse_manifest(self._template(chart_path))
        if self.helm_config.client_only:
            return rendered
        return RenderedSet(
            objects=self._dry_run(rendered.objects),
            raw_blobs=rendered.raw_blobs,
        )

    ## Implementation ##########################################################

    def _command(self, chart_path: str, values_path: str) -> List[str]:
        return [
            self.helm_config.binary,
            "template",
            self.helm_config.release_name,
            chart_path,
            "--namespace",
            self.helm_config.namespace,
            "--include-crds",
            "--values",
            values_path,
        ]

    def _template(self, chart_path: str) -> str:
        """Run helm template with the value overlay and return the manifest"""
        with tempfile.TemporaryDirectory() as tmp_dir:
            values_path = os.path.join(tmp_dir, "values.yaml")
            with open(values_path, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(self.helm_config.get("values") or {}), handle)

            cmd = self._command(chart_path, values_path)
            log.debug("Running command: %s", " ".join(shlex.quote(arg) for arg in cmd))
            try:
                proc = subprocess.run(
                    cmd,
                    capture_output=True,
                    check=False,
                    timeout=self.helm_config.timeout_seconds,
                )
            except (OSError, subprocess.TimeoutExpired) as err:
                raise RenderError(f"Command '{cmd[0]} template' failed: {err}") from err

        if proc.returncode:
            errors = [f"Command '{cmd[0]} template' failed with return code {proc.returncode}"]
            if proc.stderr:
                errors.append(proc.stderr.decode("utf-8", errors="replace"))
            log.debug("\n".join(errors))
            raise RenderError("\n".join(errors))
        return proc.stdout.decode("utf-8")

    def _dry_run(self, objects: List[dict]) -> List[dict]:
        """Resolve every object against the store without persisting it"""
        resolved = []
        errors = []
        for obj in objects:
            obj["metadata"] = obj.get("metadata") or {}
            obj["metadata"].setdefault("namespace", self.helm_config.namespace)
            try:
                result = self.deploy_manager.apply(
                    obj, field_manager=self.field_owner, dry_run=True
                )
            except StoreError as err:
                errors.append(f"{resource_identifiers(obj)}: {err}")
                continue
            result.pop("status", None)
            for key in _SERVER_POPULATED_METADATA:
                (result.get("metadata") or {}).pop(key, None)
            resolved.append(result)
        if errors:
            raise RenderError("\n".join(errors))
        return resolved
