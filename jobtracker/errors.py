"""
Error taxonomy for the job tracker.

Every error carries a stable ``code``, a human readable ``message`` and the
HTTP status the API layer renders it with. ``details`` holds structured
context (allowed transitions, vendor status, ...) that is echoed back to the
caller so operators can tell a vendor rejection from a local state problem.
"""

from typing import Any, Dict, Iterable, Optional


class JobTrackerError(Exception):
    code = "JOB_TRACKER_ERROR"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidTransition(JobTrackerError):
    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, job_id: str, current: str, target: str, allowed: Iterable[str]):
        allowed = sorted(allowed)
        super().__init__(
            f"Cannot move job {job_id} from {current} to {target}; allowed: {', '.join(allowed) or 'none'}",
            {"job_id": job_id, "current_state": current, "target_state": target, "allowed": allowed},
        )
        self.allowed = allowed


class InvalidState(JobTrackerError):
    code = "INVALID_STATE"
    http_status = 409

    def __init__(self, job_id: str, current: str, expected: Iterable[str], action: str):
        expected = list(expected)
        super().__init__(
            f"Job {job_id} is in state {current}; {action} requires {' or '.join(expected)}",
            {"job_id": job_id, "current_state": current, "expected": expected, "action": action},
        )


class DispatchFailed(JobTrackerError):
    code = "DISPATCH_FAILED"
    http_status = 502

    def __init__(self, message: str, leg: Optional[str] = None,
                 vendor_status: Optional[int] = None, vendor_body: Optional[str] = None):
        super().__init__(message, {"leg": leg, "vendor_status": vendor_status, "vendor_body": vendor_body})
        self.leg = leg
        self.vendor_status = vendor_status
        self.vendor_body = vendor_body


class InvalidRequest(JobTrackerError):
    code = "INVALID_REQUEST"
    http_status = 400


class StaleJobState(JobTrackerError):
    code = "STALE_JOB_STATE"
    http_status = 409

    def __init__(self, job_id: str, expected: str, actual: str):
        super().__init__(f"Job {job_id} changed state concurrently (expected {expected}, found {actual})",
                         {"job_id": job_id, "expected": expected, "actual": actual})


class VendorError(JobTrackerError):
    code = "VENDOR_ERROR"
    http_status = 502


class JobNotFound(JobTrackerError):
    code = "JOB_NOT_FOUND"
    http_status = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found", {"job_id": job_id})


class JobIdNotFound(JobTrackerError):
    code = "JOB_ID_NOT_FOUND"
    http_status = 422

    def __init__(self, submission_id: Optional[str]):
        super().__init__(f"No job identifier found in submission {submission_id}",
                         {"submission_id": submission_id})


class UnknownFormType(JobTrackerError):
    code = "UNKNOWN_FORM_TYPE"
    http_status = 422

    def __init__(self, form_id: str):
        super().__init__(f"Unknown vendor form id {form_id}", {"form_id": form_id})


class FieldMapError(JobTrackerError):
    code = "FIELD_MAP_ERROR"
    http_status = 500
