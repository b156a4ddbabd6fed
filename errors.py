"""Error taxonomy shared by the store, the lifecycle controller and the API."""


class JobServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(JobServiceError):
    status_code = 400


class AuthError(JobServiceError):
    status_code = 401


class NotFoundError(JobServiceError):
    status_code = 404

    def __init__(self, message: str = "Job not found"):
        super().__init__(message)


class BackendError(JobServiceError):
    """A store, email, audit or deploy backend failed."""
    status_code = 500


class StoreError(BackendError):
    pass


class AuditError(BackendError):
    pass


class DeployError(BackendError):
    pass
