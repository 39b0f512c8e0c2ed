from typing import Optional


class ProctoringError(Exception):
    status_code: int = 500

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(ProctoringError):
    status_code = 400


class NotFoundError(ProctoringError):
    status_code = 404


class StoreError(ProctoringError):
    status_code = 500


class ApiError(ProctoringError):
    """Non-2xx answer from the proctoring API, as seen by a client."""

    def __init__(self, status_code: int, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message, detail)
        self.status_code = status_code
