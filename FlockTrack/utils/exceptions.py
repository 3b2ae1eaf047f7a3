"""
Typed exception hierarchy for the stock ledger, cycle lifecycle and metrics engine.

Every exception carries a machine-readable `code` class attribute plus the
structured fields that explain it (requested vs. available stock, entity ids),
so callers and the HTTP layer never parse message text.

    FlockTrackError
    +-- NotFoundError          NOT_FOUND
    +-- ValidationError        VALIDATION_ERROR
    +-- ConflictError          CONFLICT
    +-- AggregationError       AGGREGATION_ERROR
    +-- InvalidArgumentsError  INVALID_ARGUMENTS
    +-- ImmutabilityError      IMMUTABLE_RECORD
"""
from decimal import Decimal
from typing import Any


class FlockTrackError(Exception):
    """Base exception for all FlockTrack domain errors."""

    code: str = "FLOCKTRACK_ERROR"

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.code, "detail": self.message}
        for key, val in self.details.items():
            payload[key] = float(val) if isinstance(val, Decimal) else val
        return payload


class NotFoundError(FlockTrackError):
    """A farmer, cycle, history, transfer or sale does not exist (or is archived/deleted)."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any, message: str | None = None):
        super().__init__(
            message or f"{entity} not found: {entity_id}",
            entity=entity,
            entity_id=str(entity_id),
        )


class ValidationError(FlockTrackError):
    """Input rejected: insufficient stock, bad numeric value, short reason, malformed breakdown."""

    code: str = "VALIDATION_ERROR"


class InsufficientStockError(ValidationError):
    """Requested bags exceed the farmer's current balance."""

    def __init__(self, farmer_id: int, requested: Decimal, available: Decimal, message: str | None = None):
        self.requested = requested
        self.available = available
        super().__init__(
            message or f"Insufficient stock: requested {requested:.2f} bags, available {available:.2f} bags",
            farmer_id=farmer_id,
            requested=requested,
            available=available,
        )


class ConflictError(FlockTrackError):
    """Operation on an already closed, reverted or deleted record."""

    code: str = "CONFLICT"


class AggregationError(FlockTrackError):
    """Failure while recomputing one item of a batch."""

    code: str = "AGGREGATION_ERROR"

    def __init__(self, item_id: Any, cause: Exception):
        self.cause = cause
        super().__init__(
            f"Aggregation failed for {item_id}: {cause}",
            item_id=str(item_id),
            cause=type(cause).__name__,
        )


class InvalidArgumentsError(FlockTrackError):
    """Caller supplied neither or both of two mutually exclusive arguments."""

    code: str = "INVALID_ARGUMENTS"


class ImmutabilityError(FlockTrackError):
    """Attempt to update or delete an append-only record."""

    code: str = "IMMUTABLE_RECORD"

    def __init__(self, entity_type: str, entity_id: Any, operation: str):
        super().__init__(
            f"{entity_type} {entity_id} is immutable and cannot be {operation}",
            entity_type=entity_type,
            entity_id=str(entity_id),
            operation=operation,
        )
