from typing import Optional


class ManagerError(Exception):
    """Base error for the manager. ``status_code`` is what the API returns."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(ManagerError):
    status_code = 400


class NotFoundError(ManagerError):
    status_code = 404


class ProfileNotFoundError(NotFoundError):
    def __init__(self, profile: str):
        super().__init__(f"Profile '{profile}' not found")
        self.profile = profile


class ConfigNotFoundError(NotFoundError):
    def __init__(self, path):
        super().__init__(f"Config not found at {path}. Please run setup first.")
        self.path = path


class TicketNotFoundError(NotFoundError):
    status_code = 400


class TicketExpiredError(TicketNotFoundError):
    pass


class AuthError(ManagerError):
    status_code = 401


class RateLimitError(ManagerError):
    status_code = 429

    def __init__(self, message: str = "", retry_after: Optional[int] = None):
        super().__init__(message or "Too many failed login attempts")
        self.retry_after = retry_after


class SubprocessError(ManagerError):
    def __init__(self, message: str = "", returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class SpawnError(SubprocessError):
    pass


class CommandTimeoutError(SubprocessError):
    pass


class OperationCancelledError(SubprocessError):
    pass


class ConfigIOError(ManagerError):
    pass
