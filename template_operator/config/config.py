"""
Loads the operator config at import time. config.yaml holds the defaults for
the reconcile loop (finalizer, field owner, final state, requeue interval), the
rate limiter, the apply pool and the helm renderer. Any leaf can be overridden
with an environment variable named after its upper-cased path, e.g.
RATE_LIMITER_BURST. Values are checked against config_validation.yaml before
logging is configured.
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from ..exceptions import assert_config
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)

library_config = aconfig.Config.from_yaml(
    os.path.join(_CONFIG_DIR, "config.yaml"),
    override_env_vars=True,
)

# Validators are fixed and never read from the environment
validation_config = aconfig.Config.from_yaml(
    os.path.join(_CONFIG_DIR, "config_validation.yaml"),
    override_env_vars=False,
)

invalid_params = get_invalid_params(library_config, validation_config)
assert_config(
    not invalid_params,
    f"Operator configuration has invalid values for: {invalid_params}",
)

alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter="json" if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)
