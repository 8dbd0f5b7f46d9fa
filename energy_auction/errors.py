import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from flask import jsonify

logger = logging.getLogger(__name__)


class AppErr(Exception):
    statuscode = 500
    message = "Server error"

    def __init__(self, message=None, statuscode=None, details=None):
        super().__init__(message or self.message)
        if message:
            self.message = message
        if statuscode:
            self.statuscode = statuscode
        self.details = details

    def to_dict(self):
        payload = {
            "error": self.message,
            "statuscode": self.statuscode
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ClearingFailure(AppErr):
    """Base for every failure a clearing run can report."""
    kind = "CLEARING_FAILURE"


class InvalidInput(ClearingFailure):
    kind = "INVALID_INPUT"
    statuscode = 400
    message = "Invalid participant record"


class AmountOverflow(InvalidInput):
    message = "Amount exceeds the fixed-point range"


class NoMarketClearing(ClearingFailure):
    kind = "NO_MARKET_CLEARING"
    statuscode = 200
    message = "No market intersection found"


class AllocationMismatch(ClearingFailure):
    kind = "ALLOCATION_MISMATCH"
    statuscode = 500
    message = "Demand and supply allocations do not balance"


class RecordStoreError(ClearingFailure):
    kind = "RECORD_STORE"
    statuscode = 503
    message = "Record store error"


class TimeslotStateError(ClearingFailure):
    kind = "TIMESLOT_STATE"
    statuscode = 409
    message = "Timeslot cannot be cleared in its current state"


class ConcurrentClearingError(ClearingFailure):
    kind = "CONCURRENT_RUN"
    statuscode = 409
    message = "Another clearing run holds this timeslot"


_FAILURES_BY_KIND = {
    cls.kind: cls
    for cls in (
        InvalidInput,
        NoMarketClearing,
        AllocationMismatch,
        RecordStoreError,
        TimeslotStateError,
        ConcurrentClearingError,
    )
}


@dataclass(frozen=True)
class ClearingError:
    """Value form of a ClearingFailure, returned instead of raised."""

    kind: str
    message: str
    details: Optional[Dict[str, Any]] = field(default=None, compare=False)
    statuscode: Optional[int] = field(default=None, compare=False)

    @classmethod
    def from_failure(cls, failure: ClearingFailure) -> "ClearingError":
        details = failure.details if isinstance(failure.details, dict) else None
        if failure.details is not None and details is None:
            details = {"info": str(failure.details)}
        return cls(
            kind=failure.kind,
            message=failure.message,
            details=details,
            statuscode=failure.statuscode,
        )

    def to_exception(self) -> ClearingFailure:
        failure_cls = _FAILURES_BY_KIND.get(self.kind, ClearingFailure)
        return failure_cls(self.message, statuscode=self.statuscode, details=self.details)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


def setup_error_handlers(app):
    @app.errorhandler(AppErr)
    def handle_app_err(err: AppErr):
        payload = err.to_dict()
        if isinstance(err, ClearingFailure):
            payload["kind"] = err.kind
        response = jsonify(payload)
        response.status_code = err.statuscode
        logger.warning("AppErr: %s (Status: %s)", err.message, err.statuscode)
        return response

    @app.errorhandler(404)
    def handle_not_found(err):
        logger.info("Not Found: %s", err)
        return jsonify({"error": "404"}), 404

    @app.errorhandler(Exception)
    def handle_generic(err):
        logger.exception("Generic Error: %s", err)
        response = jsonify({"error": "Server error", "details": str(err)})
        response.status_code = 500
        return response


__all__ = [
    'AppErr', 'ClearingFailure', 'InvalidInput', 'AmountOverflow', 'NoMarketClearing',
    'AllocationMismatch', 'RecordStoreError', 'TimeslotStateError',
    'ConcurrentClearingError', 'ClearingError', 'setup_error_handlers',
]
