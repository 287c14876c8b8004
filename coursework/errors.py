class PortalError(Exception):
    """Base error; carries the HTTP status the API answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(PortalError):
    status_code = 400


class NotFound(PortalError):
    status_code = 404


class ExamNotFound(NotFound):
    pass


class AttemptNotFound(NotFound):
    pass


class BatchNotFound(NotFound):
    pass


class PersistenceFailure(PortalError):
    """Storage error during a write. Every write is keyed on its natural key,
    so the whole operation can be retried."""

    status_code = 500


class AutosaveFailure(PortalError):
    """Non-fatal: recorded by the autosave scheduler, never raised out of it."""

    status_code = 500
