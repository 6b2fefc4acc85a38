"""
hiverewarder/errors.py

Exception hierarchy shared by the reward engine.
"""


class HiveRewarderError(Exception):
    """Base class for all hiverewarder errors."""
    pass


class HiveClientError(HiveRewarderError):
    """Raised when no Hive API node could serve a request."""
    pass


class DocumentValidationError(HiveRewarderError):
    """Raised when a persisted or upstream document has an invalid shape."""
    pass


class CheckpointError(HiveRewarderError):
    """Raised on an invalid sync cursor update."""
    pass
