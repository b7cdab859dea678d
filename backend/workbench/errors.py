from typing import Optional


class WorkbenchError(Exception):
    pass


class StorageError(WorkbenchError):
    """A write or delete against the key-value store did not go through."""


class QuotaExceededError(StorageError):
    def __init__(self, key: str, needed: int, quota: int):
        super().__init__(f"Storage quota exceeded writing {key!r}: {needed} > {quota} bytes")
        self.key = key
        self.needed = needed
        self.quota = quota


class RequestFailed(WorkbenchError):
    """
    Raised by the execution engine instead of returning a response.
    `response` is the error-shaped envelope (status 0, "Network Error").
    """

    def __init__(self, response, cause: Optional[BaseException] = None):
        super().__init__(response.data.get("error") if isinstance(response.data, dict) else "Network Error")
        self.response = response
        self.cause = cause


class InvalidImportError(WorkbenchError):
    pass
