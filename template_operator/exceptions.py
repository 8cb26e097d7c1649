"""
This module implements custom exceptions
"""

# Standard
from typing import List

## Base Error ##################################################################


class TemplateOperatorError(Exception):
    """Base class for all template_operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should stop the
        operator rather than trigger a retry
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class TemplateOperatorFatalError(TemplateOperatorError):
    """A fatal error is one that indicates a misconfiguration that no amount of
    retrying will fix
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(TemplateOperatorFatalError):
    """Exception caused during usage of user-provided configuration"""


## Expected Errors #############################################################


class TemplateOperatorExpectedError(TemplateOperatorError):
    """An expected error terminates the current reconciliation but is expected
    to resolve in a subsequent one
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class StoreError(TemplateOperatorExpectedError):
    """Exception caused when an operation against the object store fails"""


class NotFoundError(StoreError):
    """The requested object does not exist in the store"""


class AlreadyExistsError(StoreError):
    """An object with the same identity already exists in the store"""


class ConflictError(StoreError):
    """The write was rejected because the resourceVersion was stale or a field
    is owned by another manager
    """


class StoreTimeoutError(StoreError):
    """A store call did not complete within the configured timeout"""


class RenderError(TemplateOperatorExpectedError):
    """Exception caused when the desired resources cannot be rendered"""


class PersistenceError(TemplateOperatorExpectedError):
    """Exception caused when the custom resource's status cannot be written"""


class AggregateApplyError(TemplateOperatorExpectedError):
    """Collection of per-object failures from a single apply or delete pass.
    The message is the newline-joined message of every collected error.
    """

    def __init__(self, errors: List[Exception]):
        self.errors = list(errors)
        super().__init__("\n".join(str(err) for err in self.errors))


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when validating operator configuration or resource registration.
    """
    if not condition:
        raise ConfigError(message)
