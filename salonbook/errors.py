"""
Error taxonomy for the availability and reservation core.

ValidationError    malformed input, never retried automatically.
ConflictError      state changed under the caller; re-fetch slots and retry.
ConsistencyError   store failed mid-transaction; nothing was committed.
AvailabilityUnavailable
                   store failed while computing slots; shown instead of an
                   empty (and misleading) slot list.
PermissionDeniedError
                   a staff actor tried a schedule write it is not allowed to do.
"""

CONFLICT_OVERLAP = "overlap"
CONFLICT_OUTSIDE_WORKING_HOURS = "outside_working_hours"
CONFLICT_STAFF_INACTIVE = "staff_inactive"
CONFLICT_CLIENT_OVERLAP = "client_overlap"
CONFLICT_LOCK_TIMEOUT = "lock_timeout"

CONFLICT_CODES = {
    CONFLICT_OVERLAP,
    CONFLICT_OUTSIDE_WORKING_HOURS,
    CONFLICT_STAFF_INACTIVE,
    CONFLICT_CLIENT_OVERLAP,
    CONFLICT_LOCK_TIMEOUT,
}


class BookingError(Exception):
    retryable = False


class ValidationError(BookingError, ValueError):
    pass


class NotFoundError(ValidationError):
    pass


class ConflictError(BookingError):
    retryable = True

    def __init__(self, code: str, message: str | None = None):
        if code not in CONFLICT_CODES:
            raise ValueError(f"Unknown conflict code: {code}")
        self.code = code
        super().__init__(message or code.replace("_", " "))


class ConsistencyError(BookingError):
    pass


class AvailabilityUnavailable(BookingError):
    retryable = True


class PermissionDeniedError(BookingError):
    pass
