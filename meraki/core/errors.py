from __future__ import annotations


class MerakiError(Exception):
    pass


class InvalidPayload(MerakiError):
    """Payload rejected before any state change."""

    def __init__(self, message: str, *, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class NotFound(MerakiError):
    """Mutation on an unknown or tombstoned record."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class RecordInConflict(MerakiError):
    """Record is waiting for the resolver; it is not editable until then."""

    def __init__(self, record_id: str):
        super().__init__(f"Record is in conflict: {record_id}")
        self.record_id = record_id


class TransportFailure(MerakiError):
    def __init__(self, message: str, *, retryable: bool = True, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class ConflictResolutionAmbiguous(MerakiError):
    """Both versions tie on every deterministic rule. Indicates a defect upstream."""
