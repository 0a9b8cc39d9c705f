"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries a machine readable ``error_type`` and a ``detail`` that is
safe to show to the caller. Identifiers, paths and stack traces belong in the
log, never in ``detail``.
"""


class XaiForgeError(Exception):
    """Base class for all application errors."""
    error_type: str = "internal_error"
    status_code: int = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(XaiForgeError):
    """Dataset or model missing, or not owned by the caller."""
    error_type = "not_found"
    status_code = 404


class ConflictError(XaiForgeError):
    """A model already exists for the dataset."""
    error_type = "conflict"
    status_code = 409


class InvalidArgumentError(XaiForgeError):
    """Request failed validation. Raised before any state is touched."""
    error_type = "invalid_argument"
    status_code = 422


class TrainingFailureError(XaiForgeError):
    """The training strategy failed after validation; nothing was persisted."""
    error_type = "training_failure"
    status_code = 500


class DatasetParsingError(XaiForgeError):
    """The source file is empty, has no header row or has ragged rows."""
    error_type = "parsing_failure"
    status_code = 422
