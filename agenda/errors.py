"""
Error taxonomy shared by the scheduling use cases.

ValidationError      - malformed input, rejected before any write
AuthorizationError   - target rule/appointment is outside the caller's account
StoreUnavailable     - database unreachable / transport failure (retryable)
An idempotence hit on materialization (the unique key already holds a row) is
not an error at all: the insert does nothing and the date counts as "skipped".

Partial failures of multi-row operations are not exceptions: batch results
carry their counts plus an ``errors`` list (see BatchResult).
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List


class SchedulingError(Exception):
    pass


class ValidationError(SchedulingError, ValueError):
    """Field-level validation failure.

    ``errors`` maps field name -> human readable message.
    """

    def __init__(self, errors: Dict[str, str] | str, field_name: str | None = None):
        if isinstance(errors, str):
            errors = {field_name or "__root__": errors}
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class AuthorizationError(SchedulingError):
    pass


class StoreUnavailable(SchedulingError):
    retryable = True


@dataclass
class BatchResult:
    """Base for multi-row operation results (counts + per-row error messages)"""
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
