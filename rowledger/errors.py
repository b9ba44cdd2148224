class MigrateError(Exception):
    pass


class MigrateConfigError(MigrateError, ValueError):
    """Raised for invalid plugin or migration definition configuration."""


class IdMapError(MigrateError):
    pass


class DestinationError(MigrateError):
    pass


class TransientDestinationError(DestinationError):
    """Destination write failure that may succeed when attempted again."""
