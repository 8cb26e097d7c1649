"""
Operator config module. Values are loaded from config.yaml at import time with
environment variable overrides and can be further overridden on the command
line.
"""

# Local
from .config import library_config, validation_config
from .validation import get_invalid_params


# Define __getattr__ on this module to delegate to the library config.
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


def validate():
    """Re-run validation against the current library config values, for use
    after command line overrides have been applied

    Returns:
        invalid_params:  List[str]
            The nested keys of every invalid parameter
    """
    return get_invalid_params(library_config, validation_config)


# Only expose the library config keys
__all__ = list(library_config.keys())
