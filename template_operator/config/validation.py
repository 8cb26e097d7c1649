"""
Module to validate values in a loaded config against a parallel validation
config. Each leaf in the validation config is a dict with a "type" key and
optional constraints for that type.
"""

# Standard
from typing import Any, Dict, List, Optional, Union
import abc

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get  # pylint: disable=cyclic-import

log = alog.use_channel("CONFG")


################################################################################
## Public ######################################################################
################################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all nested keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, validator in parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


def parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, "Validator"]:
    """Recursively parse the validation config into a flat dict of nested keys
    pointing to their Validator
    """
    output = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        type_name = val.get("type")
        if isinstance(type_name, str) and type_name in _VALIDATORS:
            log.debug3("Found parameter at %s", nested_key)
            kwargs = {k: v for k, v in val.items() if k != "type"}
            output[nested_key] = _VALIDATORS[type_name](**kwargs)
        else:
            log.debug3("Recursing into %s", nested_key)
            output.update(parse_validation_config(val, key_parts))
    return output


################################################################################
## Implementation ##############################################################
################################################################################

# pylint: disable=too-few-public-methods


class Validator(abc.ABC):
    """A single config parameter with type and value validation"""

    TYPES = ()

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Check the type and then the value"""
        if self.optional and value is None:
            return True
        # bool is a subclass of int, so it never counts as a number
        if isinstance(value, bool) and bool not in self.TYPES:
            log.warning("Invalid type <%s>", type(value))
            return False
        if not isinstance(value, self.TYPES):
            log.warning("Invalid type <%s>", type(value))
            return False
        if not self._validate_value(value):
            log.warning("Invalid value [%s]", value)
            return False
        return True

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type-specific value check"""


class NumberValidator(Validator):
    """A number with optional inclusive bounds"""

    TYPES = (int, float)

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def _validate_value(self, value: Union[int, float]) -> bool:
        return (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        )


class IntValidator(NumberValidator):
    """A number that must be an int"""

    TYPES = (int,)


class StrValidator(Validator):
    """A str with optional length bounds"""

    TYPES = (str,)

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len

    def _validate_value(self, value: str) -> bool:
        return (self._min_len is None or len(value) >= self._min_len) and (
            self._max_len is None or len(value) <= self._max_len
        )


class BoolValidator(Validator):
    """A bool; any bool value is valid"""

    TYPES = (bool,)

    def _validate_value(self, value: bool) -> bool:
        return True


class EnumValidator(Validator):
    """One of a fixed set of str or int values"""

    TYPES = (str, int, type(None))

    def __init__(self, *, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert (
            isinstance(values, list) and values
        ), "Must specify at least one enum value!"
        self.values = values

    def _validate_value(self, value: Union[str, int, None]) -> bool:
        return value in self.values


# pylint: enable=too-few-public-methods

_VALIDATORS = {
    "number": NumberValidator,
    "int": IntValidator,
    "str": StrValidator,
    "bool": BoolValidator,
    "enum": EnumValidator,
}
