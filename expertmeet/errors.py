"""Error taxonomy shared by the booking, messaging and call subsystems.

Every error carries the HTTP status the API layer answers with and a
human-readable message suitable for a single user notification.
"""

from __future__ import annotations


class ExpertMeetError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(ExpertMeetError):
    status_code = 404
    code = "not_found"


class InvalidRequest(ExpertMeetError):
    status_code = 400
    code = "invalid_request"


class QuotaExceeded(ExpertMeetError):
    status_code = 402
    code = "quota_exceeded"

    def __init__(self, message: str, *, kind: str, used: int, limit: int) -> None:
        super().__init__(message)
        self.kind = kind
        self.used = used
        self.limit = limit


class ConfigurationError(ExpertMeetError):
    status_code = 500
    code = "configuration_error"


class CallProvisioningError(ExpertMeetError):
    status_code = 503
    code = "call_provisioning_error"


class SignalingError(ExpertMeetError):
    status_code = 400
    code = "signaling_error"


class MediaAcquisitionError(ExpertMeetError):
    code = "media_acquisition_error"


class IceFailure(ExpertMeetError):
    code = "ice_failure"


class DuplicateRecord(ExpertMeetError):
    """Raised by repositories when a unique key is already taken."""

    status_code = 409
    code = "duplicate_record"


class StaleRecord(ExpertMeetError):
    """Raised by repositories when a compare-and-swap write lost the race."""

    status_code = 409
    code = "stale_record"
