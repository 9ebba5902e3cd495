from fastapi import APIRouter, HTTPException, status

from app.config import settings
from app.schemas.otp import (
    MessageResponse,
    OtpRequest,
    OtpResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PasswordResetRequest,
)
from app.services.errors import (
    AccountNotFound,
    DeliveryError,
    InvalidInput,
    InvalidOrExpiredChallenge,
    OtpError,
    ProviderError,
    StoreError,
)
from app.services.otp import otp_manager

router = APIRouter(prefix="/auth", tags=["auth"])
# Paths used by the original mobile clients.
legacy_router = APIRouter(tags=["auth"])

_STATUS_BY_ERROR = (
    (InvalidInput, status.HTTP_400_BAD_REQUEST),
    (InvalidOrExpiredChallenge, status.HTTP_400_BAD_REQUEST),
    (AccountNotFound, status.HTTP_404_NOT_FOUND),
    (DeliveryError, status.HTTP_502_BAD_GATEWAY),
    (ProviderError, status.HTTP_502_BAD_GATEWAY),
    (StoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _to_http_error(exc: OtpError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )


@router.post("/otp/request", response_model=OtpResponse, response_model_exclude_none=True)
@legacy_router.post("/sendOtp", response_model=OtpResponse, response_model_exclude_none=True)
def request_otp(payload: OtpRequest) -> OtpResponse:
    try:
        challenge = otp_manager.issue_and_notify(payload.email)
    except OtpError as exc:
        raise _to_http_error(exc) from exc
    return OtpResponse(
        message="OTP sent",
        expires_at=challenge.expires_at,
        expires_in_seconds=int(
            (challenge.expires_at - challenge.issued_at).total_seconds()
        ),
        otp=challenge.code if settings.otp_expose_code else None,
    )


@router.post("/otp/verify", response_model=OtpVerifyResponse)
@legacy_router.post("/verifyOtpAndGenerateToken", response_model=OtpVerifyResponse)
def verify_otp(payload: OtpVerifyRequest) -> OtpVerifyResponse:
    try:
        token = otp_manager.verify_and_exchange(payload.email, payload.otp)
    except OtpError as exc:
        raise _to_http_error(exc) from exc
    return OtpVerifyResponse(token=token)


@router.post("/password/reset", response_model=MessageResponse)
def reset_password(payload: PasswordResetRequest) -> MessageResponse:
    try:
        otp_manager.verify_and_update_secret(
            payload.email, payload.otp, payload.new_password
        )
    except OtpError as exc:
        raise _to_http_error(exc) from exc
    return MessageResponse(success=True, message="Password updated")
