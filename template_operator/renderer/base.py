"""
The output contract shared by every renderer and the multi-document manifest
parser they all feed their text through
"""

# Standard
from dataclasses import dataclass, field
from typing import List
import abc
import re

# Third Party
import yaml

# First Party
import alog

# Local
from .. import constants

log = alog.use_channel("RNDR")

# A document boundary is any line that starts with the delimiter
_DOCUMENT_SPLIT = re.compile(
    rf"^{re.escape(constants.DOCUMENT_DELIMITER)}.*$", flags=re.MULTILINE
)


@dataclass
class RenderedSet:
    """The output of a renderer. Objects are applied in order. Raw blobs are
    fragments that could not be parsed as objects; they are kept for
    inspection and never applied.
    """

    objects: List[dict] = field(default_factory=list)
    raw_blobs: List[bytes] = field(default_factory=list)

    def __len__(self):
        return len(self.objects)

    def __bool__(self):
        return bool(self.objects)


class RendererBase(abc.ABC):
    """A renderer turns the spec of a custom resource into the set of objects
    that make up its installation
    """

    @abc.abstractmethod
    def render(self, resource) -> RenderedSet:
        """Render the objects for the given custom resource

        Args:
            resource:  CustomResource
                The resource whose spec drives the render

        Returns:
            rendered:  RenderedSet
                The rendered objects and any unparseable fragments

        Raises:
            RenderError: The source could not be read or rendered
        """


def parse_manifest(manifest: str) -> RenderedSet:
    """Split a multi-document manifest into objects and raw blobs. Blank and
    null documents are skipped. Documents that do not parse as a mapping with a
    kind are kept verbatim in raw_blobs.

    Args:
        manifest:  str
            The full manifest text

    Returns:
        rendered:  RenderedSet
            The parsed objects in document order
    """
    rendered = RenderedSet()
    for document in _DOCUMENT_SPLIT.split(manifest):
        document = document.strip()
        if not document or document == "null":
            continue
        try:
            content = yaml.safe_load(document)
        except yaml.YAMLError as err:
            log.debug2("Keeping unparseable document as raw blob: %s", err)
            rendered.raw_blobs.append(_to_blob(document))
            continue
        if content is None:
            continue
        if not isinstance(content, dict) or "kind" not in content:
            log.debug2("Keeping non-object document as raw blob")
            rendered.raw_blobs.append(_to_blob(document))
            continue
        rendered.objects.append(content)

    log.debug3(
        "Parsed %d objects and %d raw blobs",
        len(rendered.objects),
        len(rendered.raw_blobs),
    )
    return rendered


def _to_blob(document: str) -> bytes:
    if document.startswith(constants.DOCUMENT_DELIMITER + "\n"):
        document = document[len(constants.DOCUMENT_DELIMITER) + 1 :]
    return (document + "\n").encode("utf-8")
