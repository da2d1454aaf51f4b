import re
from datetime import date
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from storefront.auth.constants import NAME_MAX_LENGTH, PHONE_PATTERN
from storefront.auth.utils import normalize_email_address, validate_password
from storefront.config.settings import config_settings
from storefront.otp.constants import NotificationChannel, OtpPurpose


def _check_phone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not re.fullmatch(PHONE_PATTERN, value):
        raise ValueError("Phone number must be 10 or 11 digits")
    return value


def _check_new_password(password: str, confirm_password: str) -> None:
    if password != confirm_password:
        raise ValueError("Passwords do not match")
    is_valid, detail = validate_password(password, config_settings.PASSWORD_MIN_LENGTH)
    if not is_valid:
        raise ValueError(detail)


class RegisterIn(BaseModel):
    email: Optional[str] = Field(None, examples=["user@example.com"])
    phone_number: Optional[str] = Field(None, examples=["0912345678"])
    first_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    last_name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    gender: Optional[Literal["male", "female", "other"]] = None
    date_of_birth: Optional[date] = None
    password: str = Field(..., examples=["StrongPassword1!"])
    confirm_password: str
    otp_sent_channel: NotificationChannel = NotificationChannel.EMAIL

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return normalize_email_address(value)

    @field_validator("phone_number")
    @classmethod
    def _normalize_phone(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value)

    @field_validator("date_of_birth")
    @classmethod
    def _not_in_future(cls, value: Optional[date]) -> Optional[date]:
        if value is not None and value > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return value

    @model_validator(mode="after")
    def _check_contact_and_password(self):
        if self.otp_sent_channel is NotificationChannel.EMAIL and not self.email:
            raise ValueError("Email is required when the code is sent by email")
        if self.otp_sent_channel is NotificationChannel.SMS and not self.phone_number:
            raise ValueError("Phone number is required when the code is sent by sms")
        _check_new_password(self.password, self.confirm_password)
        return self

    @property
    def contact(self) -> str:
        if self.otp_sent_channel is NotificationChannel.EMAIL:
            return self.email
        return self.phone_number


class ResetPasswordIn(BaseModel):
    contact: str = Field(..., min_length=1, max_length=320)
    otp_sent_channel: NotificationChannel = NotificationChannel.EMAIL
    new_password: str
    confirm_password: str

    @model_validator(mode="after")
    def _check_contact_and_password(self):
        if self.otp_sent_channel is NotificationChannel.EMAIL:
            self.contact = normalize_email_address(self.contact)
        else:
            self.contact = _check_phone(self.contact)
        _check_new_password(self.new_password, self.confirm_password)
        return self


class VerifyOtpIn(BaseModel):
    contact: str = Field(..., min_length=1, max_length=320)
    otp: str
    otp_type: OtpPurpose
    otp_sent_channel: NotificationChannel = NotificationChannel.EMAIL

    @field_validator("otp")
    @classmethod
    def _digits_only(cls, value: str) -> str:
        value = value.strip()
        if not re.fullmatch(rf"\d{{{config_settings.OTP_LENGTH}}}", value):
            raise ValueError(f"OTP must be exactly {config_settings.OTP_LENGTH} digits")
        return value

    @field_validator("contact")
    @classmethod
    def _strip_contact(cls, value: str) -> str:
        return value.strip()
