from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from backoffice.common.exception.errors import BaseExceptionError
from backoffice.common.log import log
from backoffice.core.conf import settings
from backoffice.src.billing.shared.exceptions import BillingError


def _validation_errors(exc: RequestValidationError) -> list[dict]:
    """Flatten validation errors into ``field: message`` strings."""
    errors = []
    for error in exc.errors():
        errors.append({
            'field': '.'.join(str(loc) for loc in error.get('loc', ()) if loc != 'body'),
            'type': error.get('type'),
            'msg': error.get('msg'),
        })
    return errors


def register_exception(app: FastAPI) -> None:
    """
    Register the global exception handlers.

    :param app: FastAPI application
    :return:
    """

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """HTTP exceptions"""
        return JSONResponse(
            status_code=exc.status_code,
            content={'code': exc.status_code, 'msg': exc.detail, 'data': None},
            headers=getattr(exc, 'headers', None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Request validation errors"""
        errors = _validation_errors(exc)
        msg = errors[0]['msg'] if errors else 'Request validation error'
        return JSONResponse(status_code=422, content={'code': 422, 'msg': msg, 'data': {'errors': errors}})

    @app.exception_handler(BaseExceptionError)
    async def custom_exception_handler(request: Request, exc: BaseExceptionError):
        """Application errors"""
        return JSONResponse(
            status_code=exc.code,
            content={'code': exc.code, 'msg': str(exc.msg), 'data': exc.data},
            background=exc.background,
        )

    @app.exception_handler(BillingError)
    async def billing_exception_handler(request: Request, exc: BillingError):
        """Billing domain errors"""
        if exc.status_code >= 500:
            log.error(f'Billing error on {request.method} {request.url.path}: {exc.code} {exc.message}')
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def all_unknown_exception_handler(request: Request, exc: Exception):
        """Anything else"""
        log.error(f'Unhandled exception on {request.method} {request.url.path}', exc_info=exc)
        msg = str(exc) if settings.ENVIRONMENT == 'dev' else 'Internal Server Error'
        return JSONResponse(status_code=500, content={'code': 500, 'msg': msg, 'data': None})
