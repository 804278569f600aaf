class BackofficeError(Exception):
    """Base class for errors raised by the back-office services."""

    status_code = 500

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"detail": self.message, **self.extra}


class ValidationError(BackofficeError):
    """Missing or out-of-range input."""

    status_code = 400


class NotFoundError(BackofficeError):
    status_code = 404


class ConflictError(BackofficeError):
    """Duplicate identifier, illegal state transition, overpayment."""

    status_code = 409


class InsufficientStockError(BackofficeError):
    status_code = 400

    def __init__(self, stock_issues: list, message: str = "Insufficient stock"):
        super().__init__(message, stock_issues=[issue.to_dict() for issue in stock_issues])
        self.stock_issues = stock_issues


class InternalError(BackofficeError):
    status_code = 500
