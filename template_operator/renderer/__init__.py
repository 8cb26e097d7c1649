"""
Renderers turn the spec of a custom resource into the objects to install
"""

# Local
from .base import RenderedSet, RendererBase, parse_manifest
from .static_directory import StaticDirectoryRenderer
from .templated_package import TemplatedPackageRenderer
