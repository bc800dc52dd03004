from fastapi import status


class PosError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ConfigurationError(PosError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class AuthError(PosError):
    status_code = status.HTTP_401_UNAUTHORIZED


class StoreError(PosError):
    """A read or write against the document store failed."""

    status_code = status.HTTP_502_BAD_GATEWAY


class ConflictError(StoreError):
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(PosError):
    status_code = status.HTTP_404_NOT_FOUND


class PosValidationError(PosError):
    pass


class LockedError(PosError):
    status_code = status.HTTP_423_LOCKED
