"""
Error taxonomy for the import subsystem
Every error carries the HTTP status it is surfaced with.
"""


class ImporterError(Exception):
    """Base class for import errors surfaced to the caller"""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class MissingInputError(ImporterError):
    status_code = 400


class InvalidManifestError(ImporterError):
    status_code = 400


class AuthRequiredError(ImporterError):
    """Registry requires (valid) credentials, e.g. a gated model"""
    status_code = 401


class ModelNotFoundError(ImporterError):
    status_code = 404


class JobNotFoundError(ImporterError):
    status_code = 404


class ObjectNotFoundError(ImporterError):
    status_code = 404


class DestinationExistsError(ImporterError):
    status_code = 409


class UpstreamError(ImporterError):
    status_code = 502


class TransferError(UpstreamError):
    """A single file could not be read from the registry or written to storage"""


class SubmissionError(UpstreamError):
    """The execution engine rejected or failed to accept an import job"""


class EngineUnavailableError(ImporterError):
    status_code = 503
