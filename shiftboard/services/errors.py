"""
Domain errors raised by the job lifecycle and worker registry services.
Each error carries the HTTP status and machine code the API renders.
"""


class ShiftboardError(Exception):
    status_code = 400
    code = "error"
    default_message = "Request could not be completed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(ShiftboardError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class Unauthorized(ShiftboardError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized. A user or company session is required."


class Forbidden(ShiftboardError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class InvalidJob(ShiftboardError):
    status_code = 422
    code = "invalid_job"
    default_message = "Invalid job details"


class InvalidResponse(ShiftboardError):
    status_code = 422
    code = "invalid_response"
    default_message = "Response must be 'accept' or 'decline'"


class NoWorkersFound(ShiftboardError):
    code = "no_workers_found"
    default_message = "No workers found for this user code."


class AvailabilityMismatch(ShiftboardError):
    code = "availability_mismatch"
    default_message = "You can only accept jobs that match your availability."


class AlreadyAccepted(ShiftboardError):
    status_code = 409
    code = "already_accepted"
    default_message = "You have already accepted this job."


class JobAlreadyFilled(ShiftboardError):
    status_code = 409
    code = "job_already_filled"
    default_message = "This job has already been filled and is no longer accepting workers."


class NotAccepted(ShiftboardError):
    code = "not_accepted"
    default_message = "You have not accepted this job."


class SlotNotFound(ShiftboardError):
    code = "slot_not_found"
    default_message = "Shift not found in worker's availability."


class UnknownTenant(ShiftboardError):
    code = "unknown_tenant"
    default_message = "User/Company with this code does not exist."


class InvalidRequest(ShiftboardError):
    status_code = 422
    code = "invalid_request"
    default_message = "Request is missing required details"


class DuplicateWorker(ShiftboardError):
    status_code = 409
    code = "duplicate_worker"
    default_message = "Worker already exists with this email."


class ConcurrentUpdate(ShiftboardError):
    status_code = 409
    code = "concurrent_update"
    default_message = "The job was modified by another request. Please retry."


class NotificationDispatchFailed(ShiftboardError):
    """Transport failure; caught by the dispatcher and never surfaced to callers."""
    status_code = 502
    code = "notification_dispatch_failed"
    default_message = "Notification could not be delivered"
