"""
Central API router and utilities for the ExamPrep platform.

This module provides:
- A central router that includes the exam module routers
- The standard response envelope
- Exception handlers translating domain errors into HTTP responses
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from examprep.common.db.repository import RepositoryError
from examprep.common.exceptions import ErrorCode, ExamPrepError

# Configure logging
logger = logging.getLogger(__name__)

# Create main API router
main_router = APIRouter()

# Dictionary to track registered modules
registered_modules: Dict[str, APIRouter] = {}

# Domain error code -> HTTP status
STATUS_BY_CODE: Dict[ErrorCode, int] = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.INVARIANT_VIOLATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
}


def register_module(name: str, router: APIRouter) -> None:
    """
    Register a module router with the main API router.

    Args:
        name: Name of the module, used as path prefix and tag
        router: FastAPI router for the module
    """
    if name in registered_modules:
        logger.warning(f"Module '{name}' already registered, overwriting")

    main_router.include_router(router, prefix=f"/{name}", tags=[name])
    registered_modules[name] = router
    logger.info(f"Registered module: {name} with {len(router.routes)} routes")


# Standard API response model
class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        """
        Create a success response.

        Args:
            data: Response data
            message: Success message

        Returns:
            Response dictionary
        """
        return {
            "status": "success",
            "message": message,
            "data": data
        }

    @staticmethod
    def error(message: str, details: Optional[Any] = None,
              code: Optional[str] = None) -> Dict[str, Any]:
        """
        Create an error response.

        Args:
            message: Error message
            details: Optional error details
            code: Optional error code

        Returns:
            Response dictionary
        """
        response = {
            "status": "error",
            "message": message
        }

        if details:
            response["details"] = details

        if code:
            response["code"] = code

        return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors and return a standardized response.
    """
    error_details = []
    for error in exc.errors():
        error_details.append({
            "location": list(error.get("loc", [])),
            "message": error.get("msg", "Unknown validation error"),
            "type": error.get("type", "")
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=APIResponse.error("Validation error", error_details, ErrorCode.VALIDATION_ERROR.value)
    )


async def exam_prep_exception_handler(request: Request, exc: ExamPrepError) -> JSONResponse:
    """
    Translate a domain error into its HTTP status and the error envelope.
    """
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.error(f"Unmapped error on {request.url.path}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")

    return JSONResponse(
        status_code=status_code,
        content=APIResponse.error(exc.message, exc.to_dict().get("details"), exc.code.value)
    )


async def repository_exception_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Storage failures surface as 500 without leaking driver details."""
    logger.error(f"Repository failure on {request.url.path}: {exc.message}", exc_info=exc.original_exception)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=APIResponse.error("Internal storage error", code=ErrorCode.UNKNOWN_ERROR.value)
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers above on an application."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ExamPrepError, exam_prep_exception_handler)
    app.add_exception_handler(RepositoryError, repository_exception_handler)
