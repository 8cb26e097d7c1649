"""
Renderer that loads objects from a single manifest file in a directory named by
the resource's spec.resourceFilePath
"""

# Standard
from typing import Optional
import os

# First Party
import alog

# Local
from .. import constants
from ..exceptions import RenderError
from .base import RenderedSet, RendererBase, parse_manifest

log = alog.use_channel("RNDR")


class StaticDirectoryRenderer(RendererBase):
    """The directory must hold exactly one manifest file. No manifest, or more
    than one, is not an error: the render is simply empty.
    """

    def __init__(self, path_field: str = constants.RESOURCE_FILE_PATH_FIELD):
        self.path_field = path_field

    def render(self, resource) -> RenderedSet:
        dir_path = resource.spec.get(self.path_field)
        if not dir_path:
            raise RenderError(f"{resource} has no spec.{self.path_field}")
        if not os.path.exists(dir_path):
            raise RenderError(f"Resource path [{dir_path}] does not exist")

        manifest_path = self._find_manifest(dir_path)
        if manifest_path is None:
            return RenderedSet()

        log.debug2("Reading manifest [%s]", manifest_path)
        try:
            with open(manifest_path, encoding="utf-8") as handle:
                manifest = handle.read()
        except (OSError, UnicodeDecodeError) as err:
            raise RenderError(
                f"yaml file could not be read [{manifest_path}]: {err}"
            ) from err
        return parse_manifest(manifest)

    @staticmethod
    def _find_manifest(dir_path: str) -> Optional[str]:
        """Get the single manifest file in the directory or None if there is not
        exactly one
        """
        if not os.path.isdir(dir_path):
            log.debug2("Resource path [%s] is not a directory", dir_path)
            return None
        try:
            entries = sorted(os.listdir(dir_path))
        except OSError as err:
            raise RenderError(f"Could not list [{dir_path}]: {err}") from err

        manifests = [
            os.path.join(dir_path, entry)
            for entry in entries
            if os.path.splitext(entry)[1] in constants.MANIFEST_EXTENSIONS
            and os.path.isfile(os.path.join(dir_path, entry))
        ]
        if not manifests:
            log.debug2("No yaml file found at file path [%s]", dir_path)
            return None
        if len(manifests) > 1:
            log.debug2("More than one yaml file found at file path [%s]", dir_path)
            return None
        return manifests[0]
