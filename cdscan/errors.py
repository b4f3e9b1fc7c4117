from typing import Optional


class CdscanError(Exception):
    pass


class MissingApiKeyError(CdscanError):
    def __init__(self) -> None:
        super().__init__("Missing API Key. Set CYBEDEFEND_API_KEY in the environment or .env file.")


class ApiError(CdscanError):
    """A failed remote call, tagged with the operation that failed."""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None, context: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.context = context


class UploadError(ApiError):
    pass


class ScanCancelled(CdscanError):
    def __init__(self, message: str = "Cancelled") -> None:
        super().__init__(message)


class ScanFailed(CdscanError):
    def __init__(self, state: str) -> None:
        super().__init__(f"Final status: {state}")
        self.state = state


class ScanTimeout(CdscanError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Polling timeout after {attempts} attempts")
        self.attempts = attempts


class ScanAlreadyRunning(CdscanError):
    def __init__(self) -> None:
        super().__init__("A scan is already running for this workspace")
