"""
Error taxonomy for the entitlement engine.

Quota outcomes (limit reached, inactive subscription) are returned as data
and never raised. The exceptions below cover the cases that callers must
handle explicitly.
"""


class EntitlementError(Exception):
    """Base class for entitlement engine errors."""


class NotFound(EntitlementError):
    """A subscription, plan or request record does not exist."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvalidTransition(EntitlementError):
    """An admin operation is not allowed from the record's current state."""

    def __init__(self, message: str, current_status=None):
        self.current_status = current_status
        super().__init__(message)


class ConcurrencyConflict(EntitlementError):
    """
    The record changed between read and write.

    Raised by stores on a failed compare-and-swap. Services retry internally
    and only let it escape once the retry budget is exhausted, at which point
    it should be treated as a transient failure.
    """

    def __init__(self, record_id, expected_version=None):
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent update detected for record {record_id} (expected version {expected_version})"
        )
