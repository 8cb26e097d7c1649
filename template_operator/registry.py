"""
The ResourceRegistry maps each custom resource kind handled by the operator to
the renderer that produces its installation. It is constructed explicitly and
handed to the components that need it.
"""

# Standard
from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

# First Party
import alog

# Local
from . import constants
from .exceptions import ConfigError, assert_config
from .renderer import RendererBase, StaticDirectoryRenderer, TemplatedPackageRenderer

log = alog.use_channel("REGIS")


@dataclass(frozen=True)
class RegisteredKind:
    """A custom resource kind and its renderer"""

    api_version: str
    kind: str
    renderer: RendererBase


class ResourceRegistry:
    """Registry of the kinds handled by the operator"""

    def __init__(self):
        self._kinds: Dict[Tuple[str, str], RegisteredKind] = {}

    def register(self, api_version: str, kind: str, renderer: RendererBase) -> RegisteredKind:
        """Register a kind. Each (api_version, kind) may only be registered
        once.
        """
        key = (api_version, kind)
        assert_config(key not in self._kinds, f"Kind {api_version}/{kind} already registered")
        assert_config(
            isinstance(renderer, RendererBase),
            f"Renderer for {api_version}/{kind} is not a RendererBase",
        )
        log.debug("Registering %s/%s with %s", api_version, kind, type(renderer).__name__)
        entry = RegisteredKind(api_version=api_version, kind=kind, renderer=renderer)
        self._kinds[key] = entry
        return entry

    def get(self, api_version: str, kind: str) -> RegisteredKind:
        """Get the registration for a kind

        Raises:
            ConfigError: The kind is not registered
        """
        entry = self._kinds.get((api_version, kind))
        if entry is None:
            raise ConfigError(f"Kind {api_version}/{kind} is not registered")
        return entry

    def get_renderer(self, resource) -> RendererBase:
        """Get the renderer for a custom resource"""
        return self.get(resource.api_version, resource.kind).renderer

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._kinds

    def __iter__(self) -> Iterator[RegisteredKind]:
        return iter(list(self._kinds.values()))

    def __len__(self):
        return len(self._kinds)


def default_registry(deploy_manager) -> ResourceRegistry:
    """Registry with the Sample and SampleHelm kinds

    Args:
        deploy_manager:  DeployManagerBase
            The store used by renderers that resolve objects server-side
    """
    registry = ResourceRegistry()
    registry.register(
        constants.API_VERSION, constants.SAMPLE_KIND, StaticDirectoryRenderer()
    )
    registry.register(
        constants.API_VERSION,
        constants.SAMPLE_HELM_KIND,
        TemplatedPackageRenderer(deploy_manager=deploy_manager),
    )
    return registry
