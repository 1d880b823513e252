"""Error taxonomy shared by the domain layer and the HTTP boundary."""

from .interfaces import UploadErrorCode


class ServiceError(Exception):
    status_code = 500
    code = 0


class InvalidInput(ServiceError):
    """Bad MIME type, oversized source, malformed URL or unreadable parameters."""

    status_code = 400


class UploadError(ServiceError):
    def __init__(self, error_code: UploadErrorCode) -> None:
        super().__init__(f"File upload error: {error_code.message}")
        self.code = int(error_code)


class StorageError(ServiceError):
    pass


class FetchError(ServiceError):
    pass


class ConversionError(ServiceError):
    pass
