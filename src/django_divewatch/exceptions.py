"""Custom exceptions for django-divewatch.

Three caller-visible families:
- InvalidInput: rejected before any write, retryable after correction
- ConflictError: the request contradicts an invariant of the store
- NotFoundError: the target does not exist or is already terminal
"""


class DivewatchError(Exception):
    """Base exception for divewatch errors."""
    pass


class InvalidInput(DivewatchError):
    """Raised when a request is missing required fields or has bad values."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


# =============================================================================
# Conflicts
# =============================================================================


class ConflictError(DivewatchError):
    """Base exception for invariant conflicts."""
    pass


class DiveAlreadyActive(ConflictError):
    """Raised when starting a dive while another one is active."""

    def __init__(self, dive_id):
        self.dive_id = dive_id
        super().__init__(f"Dive {dive_id} is already active")


class DuplicateCartNumber(ConflictError):
    """Raised when a cart number is already used within the same dive."""

    def __init__(self, cart_number, dive_id):
        self.cart_number = cart_number
        self.dive_id = dive_id
        super().__init__(f"Cart number {cart_number} already exists in dive {dive_id}")


class SettingsLocked(ConflictError):
    """Raised when changing dive settings after the first check-in."""

    def __init__(self, dive_id):
        self.dive_id = dive_id
        super().__init__(
            f"Settings of dive {dive_id} are locked: carts have already checked in"
        )


class InvalidTimerState(ConflictError):
    """Raised when a timer operation is not valid from the cart's current state."""

    def __init__(self, cart_id, state: str, operation: str):
        self.cart_id = cart_id
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} cart {cart_id} while it is {state}")


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(DivewatchError):
    """Base exception for missing or terminal records."""
    pass


class DiveNotFound(NotFoundError):
    """Raised when a dive does not exist or is already completed."""

    def __init__(self, dive_id, reason: str = None):
        self.dive_id = dive_id
        self.reason = reason or f"Active dive '{dive_id}' not found"
        super().__init__(self.reason)


class CartNotFound(NotFoundError):
    """Raised when a cart does not exist or is already completed."""

    def __init__(self, cart_id, reason: str = None):
        self.cart_id = cart_id
        self.reason = reason or f"Active cart '{cart_id}' not found"
        super().__init__(self.reason)


class CartNotRunning(CartNotFound):
    """Raised when checking in a cart whose timer is not running."""

    def __init__(self, cart_id, state: str):
        self.state = state
        super().__init__(cart_id, f"Running cart '{cart_id}' not found (cart is {state})")


class EventNotFound(NotFoundError):
    """Raised when an event does not exist."""

    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Event '{event_id}' not found")


class ImmutableCheckIn(DivewatchError):
    """Raised when attempting to modify a stored check-in row."""

    def __init__(self, checkin_id):
        self.checkin_id = checkin_id
        super().__init__(f"Check-in '{checkin_id}' is append-only and cannot be modified")
