"""Domain failures raised by the service layer and mapped to HTTP in main."""


class TaskTrackerError(Exception):
    """Base class for every failure this service raises on purpose."""


class CredentialError(TaskTrackerError):
    """A presented bearer token could not be verified."""


class MalformedCredential(CredentialError):
    pass


class InvalidSignature(CredentialError):
    pass


class ExpiredCredential(CredentialError):
    pass


class Unauthorized(TaskTrackerError):
    """Endpoint requires an authenticated principal and none was published."""


class InvalidCredentials(TaskTrackerError):
    """Login failed. Deliberately silent on which half of the pair was wrong."""

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message)


class NotFound(TaskTrackerError):
    def __init__(self, task_id: int):
        super().__init__(f"Task with id {task_id} not found")
        self.task_id = task_id


class Forbidden(TaskTrackerError):
    def __init__(self, task_id: int):
        super().__init__(f"Not allowed to access task {task_id}")
        self.task_id = task_id


class StorageFailure(TaskTrackerError):
    """Durable store rejected or could not complete an operation."""


class AdvisoryUnavailable(TaskTrackerError):
    """Advisory chat model failed; callers always recover with a fallback."""
