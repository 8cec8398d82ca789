from fastapi import HTTPException, status

from site_analytics.errors import (
    AnalyticsError,
    AuthorizationError,
    EvaluationCancelled,
    ValidationError,
)


def to_http_error(error: AnalyticsError, failure_detail: str) -> HTTPException:
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    if isinstance(error, EvaluationCancelled):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=failure_detail)
