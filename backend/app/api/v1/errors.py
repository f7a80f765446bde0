"""Map workflow errors onto HTTP responses.

Registered once on the app, so endpoints let service errors propagate.
"""
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from app.core.exceptions import (
    AlreadyProcessedError,
    ApprovalRecordNotFoundError,
    DoubleInitializationError,
    ExpenseNotFoundError,
    InvalidDecisionError,
    NotCurrentApproverError,
    WorkflowError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ExpenseNotFoundError: status.HTTP_404_NOT_FOUND,
    ApprovalRecordNotFoundError: status.HTTP_404_NOT_FOUND,
    NotCurrentApproverError: status.HTTP_403_FORBIDDEN,
    AlreadyProcessedError: status.HTTP_409_CONFLICT,
    DoubleInitializationError: status.HTTP_409_CONFLICT,
    InvalidDecisionError: status.HTTP_400_BAD_REQUEST,
}


def status_for(exc: WorkflowError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_400_BAD_REQUEST


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    code = status_for(exc)
    logger.info("%s %s -> %s %s: %s", request.method, request.url.path, code, exc.code, exc.message)
    return JSONResponse(status_code=code, content={"detail": {"code": exc.code, "message": exc.message}})
