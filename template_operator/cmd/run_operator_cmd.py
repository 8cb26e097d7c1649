"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, DryRunDeployManager, OpenshiftDeployManager
from ..exceptions import ConfigError
from ..reconcile import ReconcileManager
from ..registry import default_registry
from ..watch_manager import ControllerManager
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A CR manifest yaml to apply directly",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        # Validate args
        if args.cr is not None and not (config.dry_run and os.path.isfile(args.cr)):
            raise ConfigError(
                "Can only specify --cr with dry run and it must point to a valid file"
            )
        if args.resource_dir is not None and not (
            config.dry_run and os.path.isdir(args.resource_dir)
        ):
            raise ConfigError(
                "Can only specify --resource_dir with dry run and it must point to a valid directory"
            )

        deploy_manager = self._setup_deploy_manager(
            self._parse_resource_dir(args.resource_dir)
        )
        registry = default_registry(deploy_manager)
        reconcile_manager = ReconcileManager(registry, deploy_manager)
        controller_manager = ControllerManager(
            reconcile_manager, registry, deploy_manager
        )

        # Register the signal handler to stop the workers
        def do_stop(*_, **__):  # pragma: no cover
            controller_manager.stop()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        # If given, apply the CR directly
        if args.cr:
            log.info("Applying CR [%s]", args.cr)
            with open(args.cr, encoding="utf-8") as handle:
                cr_manifest = yaml.safe_load(handle)
            cr_manifest.setdefault("metadata", {}).setdefault("namespace", "default")
            log.debug3(cr_manifest)
            deploy_manager.apply(cr_manifest, field_manager=config.field_owner)

        log.info("Starting controller manager")
        controller_manager.start()
        controller_manager.wait()

        # All done!
        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            doc for doc in yaml.safe_load_all(handle) if doc
                        )
        return all_resources

    @staticmethod
    def _setup_deploy_manager(resources: List[dict]) -> DeployManagerBase:
        """Build the DeployManager for the configured mode"""
        if config.dry_run:
            log.info("Running DRY RUN")
            return DryRunDeployManager(resources=resources)
        return OpenshiftDeployManager()
