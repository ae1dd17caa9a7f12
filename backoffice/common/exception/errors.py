from typing import Any

from fastapi import HTTPException
from starlette.background import BackgroundTask


class BaseExceptionError(Exception):
    """Base for application errors rendered by the exception handlers"""

    code: int

    def __init__(self, *, msg: str | None = None, data: Any = None, background: BackgroundTask | None = None) -> None:
        self.msg = msg
        self.data = data
        # https://www.starlette.io/background/
        self.background = background


class HTTPError(HTTPException):
    """HTTP error"""

    def __init__(self, *, code: int, msg: Any = None, headers: dict[str, Any] | None = None) -> None:
        super().__init__(status_code=code, detail=msg, headers=headers)


class AuthorizationError(BaseExceptionError):
    """Authentication failed"""

    code = 401

    def __init__(self, *, msg: str = 'Permission Denied', data: Any = None, background: BackgroundTask | None = None) -> None:
        super().__init__(msg=msg, data=data, background=background)


class TokenError(HTTPError):
    """Missing or invalid bearer token"""

    code = 401

    def __init__(self, *, msg: str = 'Not Authenticated', headers: dict[str, Any] | None = None) -> None:
        super().__init__(code=self.code, msg=msg, headers=headers or {'WWW-Authenticate': 'Bearer'})


class ForbiddenError(BaseExceptionError):
    """Access denied"""

    code = 403

    def __init__(self, *, msg: str = 'Forbidden', data: Any = None, background: BackgroundTask | None = None) -> None:
        super().__init__(msg=msg, data=data, background=background)


class NotFoundError(BaseExceptionError):
    """Resource not found"""

    code = 404

    def __init__(self, *, msg: str = 'Not Found', data: Any = None, background: BackgroundTask | None = None) -> None:
        super().__init__(msg=msg, data=data, background=background)


class UnprocessableError(BaseExceptionError):
    """Business rule rejected the request"""

    code = 422

    def __init__(
        self, *, msg: str = 'Unprocessable Entity', data: Any = None, background: BackgroundTask | None = None
    ) -> None:
        super().__init__(msg=msg, data=data, background=background)


class ServerError(BaseExceptionError):
    """Unexpected server failure"""

    code = 500

    def __init__(
        self, *, msg: str = 'Internal Server Error', data: Any = None, background: BackgroundTask | None = None
    ) -> None:
        super().__init__(msg=msg, data=data, background=background)
