"""
Render the objects for a CR manifest and print them without applying anything
"""
# Standard
import argparse
import sys

# Third Party
import yaml

# First Party
import alog

# Local
from ..custom_resource import CustomResource
from ..deploy_manager import DryRunDeployManager
from ..registry import default_registry
from .base import CmdBase

log = alog.use_channel("MAIN")


class RenderCmd(CmdBase):
    __doc__ = __doc__

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("render", help=__doc__)
        parser.add_argument(
            "--cr",
            "-c",
            required=True,
            help="A CR manifest yaml to render",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        with open(args.cr, encoding="utf-8") as handle:
            resource = CustomResource(yaml.safe_load(handle))

        # Server-side dry runs go to an empty in-memory store
        registry = default_registry(DryRunDeployManager())
        rendered = registry.get_renderer(resource).render(resource)
        log.info(
            "Rendered %d objects and %d raw blobs for [%s]",
            len(rendered.objects),
            len(rendered.raw_blobs),
            resource,
        )
        yaml.safe_dump_all(rendered.objects, sys.stdout)
