"""
Error kinds reported by the scheduling, scenario and station layers.

Every error is raised to the caller; the API blueprint maps each kind to an
HTTP status through ``status_code``.
"""


class KitplanError(Exception):
    """Base class for domain errors."""
    status_code = 400

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {'error': self.__class__.__name__, 'details': self.message}
        if self.details:
            payload['context'] = self.details
        return payload


class ValidationError(KitplanError):
    """Malformed input detected before any computation starts."""
    status_code = 400


class InvalidReference(KitplanError):
    """A delay, change or call references a nonexistent step, job, shift or scenario."""
    status_code = 404


class InvalidOperationSequence(KitplanError):
    """ADD/MODIFY/DELETE ordering conflict within one scenario replay."""
    status_code = 409


class CounterUnderflow(KitplanError):
    """Release called more times than Assign for a job."""
    status_code = 409


class CommitFailure(KitplanError):
    """The scenario commit transaction did not fully apply and was rolled back."""
    status_code = 500


class ContractViolation(KitplanError):
    """Programming error inside the core, e.g. a production view asking for inactive shifts."""
    status_code = 500
