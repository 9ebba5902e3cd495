from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


class OtpRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)


class OtpResponse(BaseModel):
    success: bool = True
    message: str
    expires_at: datetime
    expires_in_seconds: int
    otp: Optional[str] = None


class OtpVerifyRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    otp: Optional[Union[int, str]] = None


class OtpVerifyResponse(BaseModel):
    success: bool = True
    token: str
    token_type: str = "bearer"


class PasswordResetRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    otp: Optional[Union[int, str]] = None
    new_password: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool
    message: str
