class DevprodError(Exception):
    """Base class for errors raised by the devprod app."""


class ConfigError(DevprodError):
    """The catalogue file is malformed."""


class ContractViolation(DevprodError):
    """An operation was called on an entry that cannot support it."""
