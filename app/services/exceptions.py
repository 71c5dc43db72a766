"""Error taxonomy for scheduled-ride operations."""


class ScheduledRideError(Exception):
    """Base class; carries a client-safe message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ScheduledRideError):
    """Bad or missing input. Nothing was persisted."""


class NotFoundError(ScheduledRideError):
    pass


class NotOwnerError(ScheduledRideError):
    """The caller does not own the ride."""


class WrongStateError(ScheduledRideError):
    """The ride is not in a state that allows the requested operation."""


class WrongRideTypeError(WrongStateError):
    pass


class RideAlreadyCompletedError(WrongStateError):
    pass


class RideAlreadyCancelledError(WrongStateError):
    pass


class RideActiveError(WrongStateError):
    pass


class RideExpiredError(WrongStateError):
    pass


class InsufficientWalletBalance(ScheduledRideError):
    """Raised inside a transaction; the whole unit of work is rolled back."""
