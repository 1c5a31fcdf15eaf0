"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class ConcurrencyConflictError(ConflictException):
    """Another transition on the same appointment won the race."""

    def __init__(self, message: str = "Appointment was modified concurrently"):
        """Initialize with 409 status code."""
        super().__init__(message)


class PersistenceError(AppException):
    """Status or audit write failed for infrastructure reasons."""

    def __init__(self, message: str = "Persistence failure"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


class HistoryIntegrityError(AppException):
    """Audit history does not reduce to the stored appointment status."""

    def __init__(self, message: str = "Appointment history is inconsistent"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500)


class NonexistentLocalTimeError(ValueError):
    """Civil time falls in a daylight-saving gap and never occurs on the clinic clock."""
