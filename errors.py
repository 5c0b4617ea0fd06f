"""
Domain errors for the outing workflow.
Each carries the HTTP status and error code the API answers with.
"""


class OutingError(Exception):
    status_code = 400
    code = "outing_error"

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

    def to_dict(self):
        return {"success": False, "error": self.code, "message": self.message}


class ValidationFailed(OutingError):
    """Invalid request data"""
    code = "validation_failed"


class NotAuthorized(OutingError):
    """Actor may not perform this action"""
    status_code = 403
    code = "not_authorized"


class NotFound(OutingError):
    """Outing request not found"""
    status_code = 404
    code = "not_found"


class InvalidTransition(OutingError):
    """Request is already approved or denied"""
    status_code = 409
    code = "invalid_transition"


class NotFullyApproved(OutingError):
    """Request not fully approved"""
    status_code = 409
    code = "not_fully_approved"


class EncodingFailure(OutingError):
    """Failed to generate QR codes"""
    status_code = 500
    code = "encoding_failure"


class UnresolvedCode(OutingError):
    """QR code not found or invalid"""
    status_code = 404
    code = "unresolved_code"


class OutOfSequenceScan(OutingError):
    """Scan does not match the request's gate state"""
    status_code = 409
    code = "out_of_sequence_scan"


class RequestNotApproved(OutingError):
    """Outing request is not approved"""
    status_code = 409
    code = "request_not_approved"


class Conflict(OutingError):
    """Request was modified concurrently, retry"""
    status_code = 409
    code = "conflict"
