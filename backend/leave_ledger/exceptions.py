from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response schema."""

    error: str
    detail: str | None = None
    status_code: int


class AppError(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Ledger errors
# ---------------------------------------------------------------------------


class InvalidUnitError(AppError):
    """A leave unit or minimum allocation unit is not recognized."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class ZeroDurationLineError(AppError):
    """A request line rounds to zero (or less) hours."""

    def __init__(self, message: str, line_index: int | None = None) -> None:
        self.line_index = line_index
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class NonBusinessDayError(AppError):
    """A request line falls on a non-business or blacked-out date."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class InsufficientBalanceError(AppError):
    """Eligible grants cannot cover the requested hours."""

    def __init__(self, message: str = "Insufficient leave balance") -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


class InvalidLedgerStateError(AppError):
    """The request's ledger footprint does not allow the attempted transition."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


class PolicyNotFoundError(AppError):
    """No active leave policy exists for the company and leave type."""

    def __init__(self, message: str = "Leave policy not found") -> None:
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND)


class GrantExpiredError(AppError):
    """Allocation targeted a grant past its expiry date."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


class ConcurrencyConflictError(AppError):
    """A lock or serialization failure; the caller should retry the whole operation."""

    def __init__(self, message: str = "Concurrent ledger update, retry the operation") -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


# SQLSTATE codes meaning the whole transaction should be retried.
_CONCURRENCY_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def concurrency_conflict_from(exc: BaseException) -> ConcurrencyConflictError | None:
    """Translate a driver lock/serialization failure into ConcurrencyConflictError."""
    for candidate in (getattr(exc, "orig", None), getattr(getattr(exc, "orig", None), "__cause__", None), exc):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code in _CONCURRENCY_SQLSTATES:
            return ConcurrencyConflictError()
    return None


async def _app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            detail=exc.message,
            status_code=exc.status_code,
        ).model_dump(),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="ValidationError",
            detail=str(exc.errors()),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        ).model_dump(),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the application."""
    app.add_exception_handler(AppError, _app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)  # type: ignore[arg-type]
