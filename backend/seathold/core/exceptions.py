"""
Fatal precondition failures of the booking core.

Expected, user-recoverable conditions (seat taken, hold expired, not the
owner, duplicate callback) are returned as typed results by the services
and never raised. What lives here indicates a data-integrity problem or
exhausted retries and is mapped to 404/500 by the API layer.
"""

import uuid


class BookingCoreError(Exception):
    """Base class for errors raised out of the booking core."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ShowNotFoundError(BookingCoreError):
    status_code = 404

    def __init__(self, show_id: uuid.UUID):
        super().__init__(f"Show {show_id} not found")
        self.show_id = show_id


class ReservationNotFoundError(BookingCoreError):
    status_code = 404

    def __init__(self, reservation_id: uuid.UUID):
        super().__init__(f"Reservation {reservation_id} not found")
        self.reservation_id = reservation_id


class LedgerConflictError(BookingCoreError):
    """Optimistic version check failed; the caller retries."""

    status_code = 409

    def __init__(self, show_id: uuid.UUID):
        super().__init__(f"Concurrent modification of show {show_id}")
        self.show_id = show_id


class LedgerContentionError(BookingCoreError):
    """Retries exhausted on a show's seat ledger."""

    status_code = 503

    def __init__(self, show_id: uuid.UUID, attempts: int):
        super().__init__(f"Seat ledger for show {show_id} is busy after {attempts} attempts")
        self.show_id = show_id
        self.attempts = attempts


class ShowLockTimeoutError(BookingCoreError):
    status_code = 503

    def __init__(self, show_id: uuid.UUID):
        super().__init__(f"Timed out waiting for the lock on show {show_id}")
        self.show_id = show_id
