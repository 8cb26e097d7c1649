"""
Top-level template_operator imports
"""

# Local
from . import config, status
from .apply import ApplyPipeline
from .custom_resource import CustomResource, ResourceKey
from .deploy_manager import DeployManagerBase, DryRunDeployManager, OpenshiftDeployManager
from .rate_limiter import RateLimiterConfig, template_rate_limiter
from .reconcile import ReconcileManager, ReconciliationResult, RequeueDirective, RequeueType
from .registry import ResourceRegistry, default_registry
from .renderer import RenderedSet, RendererBase, StaticDirectoryRenderer, TemplatedPackageRenderer
from .status import State
