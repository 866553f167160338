"""
ServiceResult to HTTP mapping.
"""

from fastapi import HTTPException, status

from taxhelper.models.enums import ErrorCode
from taxhelper.receipts.service import ServiceResult

ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.VALIDATION_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_STATUS: status.HTTP_409_CONFLICT,
    ErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
}


def raise_for_result(result: ServiceResult) -> None:
    """Raise an HTTPException carrying {code, error} when the result failed."""
    if result.success:
        return
    code = result.code or ErrorCode.UNKNOWN_ERROR
    raise HTTPException(
        status_code=ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"code": code.value, "error": result.error},
    )
