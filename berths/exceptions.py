class ReservationError(Exception):
    """
    Base exception for unexpected failures of the reservation engine.
    Expected outcomes (no tickets left, unknown PNR) are returned as results.
    """


class LedgerIntegrityError(ReservationError):
    """Raised when the tier ledger and the berth inventory disagree."""


class LedgerConflictError(ReservationError):
    """Raised when the ledger row changed under a version-checked update."""

    def __init__(self, expected_version):
        self.expected_version = expected_version
        super().__init__(
            f"Tier ledger was modified concurrently (expected version {expected_version})"
        )


class ConfirmationCodeCollisionError(ReservationError):
    """Raised when no unused PNR could be generated."""


class LedgerBusyError(ReservationError):
    """Raised when the database stayed locked for longer than LOCK_WAIT_TIMEOUT."""
