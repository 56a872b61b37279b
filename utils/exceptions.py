# utils/exceptions.py
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from werkzeug.exceptions import HTTPException


class BizError(HTTPException):
    code: int  # HTTP status code
    message: str  # human readable reason
    data: Optional[Any]  # extra payload

    def __init__(self, message: str = "Business error", code: int = 400, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(description=message)

    def __str__(self):
        return self.message


class ValidationError(BizError):
    """Input rejected before any write; ``errors`` lists every violation."""

    def __init__(self, errors: List[Dict[str, Any]], message: Optional[str] = None):
        self.errors = list(errors)
        if message is None:
            parts = [f"{e['field']}: {e['message']}" for e in self.errors]
            message = "Validation failed: " + "; ".join(parts)
        super().__init__(message, 400, {"errors": self.errors})


class NotFoundError(BizError):
    def __init__(self, message: str = "Record not found"):
        super().__init__(message, 404)


class SyncTransportError(BizError):
    """Network, HTTP or protocol failure while exchanging with the peer."""

    def __init__(self, message: str = "Synchronization with the peer failed", status: Optional[int] = None):
        self.status = status
        super().__init__(message, 502, {"peer_status": status} if status else None)


class StoreTransactionError(BizError):
    """Storage engine failure; the transaction has been rolled back."""

    def __init__(self, message: str = "Storage transaction failed"):
        super().__init__(message, 500)


class SyncInProgressError(BizError):
    def __init__(self, message: str = "A synchronization cycle is already running"):
        super().__init__(message, 409)


@dataclass(frozen=True)
class ConflictSkipped:
    """A merge candidate that was not applied.

    Not an error: collected and counted, never raised.

    reason:
      - ``stale``: incoming version older than ours, or the same row at the same version
      - ``diverged``: same version, different content (a concurrent edit)
      - ``block_number``: the number is held by another live block, ``local_id``
    """

    collection: str
    record_id: str
    incoming_version: int
    local_version: Optional[int]
    reason: str = "stale"
    local_id: Optional[str] = None

    @property
    def is_conflict(self) -> bool:
        return self.reason != "stale"
