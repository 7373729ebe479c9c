"""Domain error taxonomy for the counting pipeline.

Services raise these; ``main.py`` registers handlers that render them as
JSON with a stable ``error`` code. Anomalies are never raised - they are
returned as data by the detector.
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


class CountingError(Exception):
    """Base class for all counting pipeline errors."""

    code = "counting_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "detail": self.message}
        payload.update(self.extra)
        return payload


class ValidationError(CountingError):
    """Malformed or missing input. Never retried."""

    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(CountingError):
    """Referenced entity is absent or not owned by the tenant."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found"
        if entity_id is not None:
            message = f"{entity} {entity_id} not found"
        super().__init__(message, entity=entity.lower().replace(" ", "_"))
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(CountingError):
    """Duplicate active session or duplicate unique-key write."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflicting: Optional[Dict[str, Any]] = None, key: str = "existing"):
        if conflicting is not None:
            super().__init__(message, **{key: conflicting})
        else:
            super().__init__(message)
        self.conflicting = conflicting


class InvalidStateError(CountingError):
    """Illegal state transition; carries the current state and the attempted action."""

    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_state: str, attempted_action: str, message: Optional[str] = None):
        super().__init__(
            message or f"Cannot {attempted_action} a session that is {current_state}",
            current_state=current_state,
            attempted_action=attempted_action,
        )
        self.current_state = current_state
        self.attempted_action = attempted_action


class TransientError(CountingError):
    """Network or store unavailability. Safe to retry."""

    code = "transient_error"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def counting_error_handler(request: Request, exc: CountingError) -> JSONResponse:
    """Render a CountingError as its JSON payload."""
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the counting error handler to the application."""
    app.add_exception_handler(CountingError, counting_error_handler)
