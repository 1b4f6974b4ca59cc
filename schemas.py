import re
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from typing import Literal, Optional

PASSWORD_PATTERN = re.compile(r"^(?=.*[A-Za-z])(?=.*\d)(?=.*[@$!%*#?&])[A-Za-z\d@$!%*#?&]{8,}$")
PHONE_PATTERN = re.compile(r"^(\+92)?03\d{9}$")
PASSWORD_RULES = "Password must be at least 8 characters & include a letter, number & symbol"


def _check_password(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(PASSWORD_RULES)
    return value


def _check_phone(value: str) -> str:
    if not PHONE_PATTERN.match(value):
        raise ValueError("Invalid phone number or missing digits (must be exactly 11 digits)")
    return value


class UserCreate(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=3)
    contact_number: str
    address: str = Field(min_length=5, max_length=200)
    role: Literal["donor", "receiver"]
    password: str
    accept_terms: bool = False

    @field_validator("full_name", "address", "contact_number", "password", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password(value)

    @field_validator("contact_number")
    @classmethod
    def phone_format(cls, value: str) -> str:
        return _check_phone(value)


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    full_name: Optional[str] = Field(default=None, min_length=3)
    contact_number: Optional[str] = None
    address: Optional[str] = Field(default=None, min_length=5, max_length=200)
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: Optional[str]) -> Optional[str]:
        return _check_password(value) if value else value

    @field_validator("contact_number")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_phone(value) if value else value


class UserRead(BaseModel):
    id: int
    email: EmailStr
    full_name: str
    contact_number: str
    address: str
    role: str

    model_config = ConfigDict(from_attributes=True)


class LoginData(BaseModel):
    email: EmailStr
    password: str


class PasswordCheck(BaseModel):
    password: str


class ForgotPassword(BaseModel):
    email: EmailStr


class ResetPassword(BaseModel):
    # strength is checked after the token so a stale link reports as stale
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class DonationCreate(BaseModel):
    medicine_name: str
    quantity: str
    medicine_form: str
    strength: str
    manufacturing_date: str
    expiry_date: str
    donor_name: str
    donor_phone_number: str
    donor_address: str


class Contact(BaseModel):
    full_name: str
    contact_number: str
    address: str

    model_config = ConfigDict(from_attributes=True)


class RequestRead(BaseModel):
    id: int
    prescription_image: str
    donation_id: int
    medicine_name: str
    strength: Optional[str] = None
    donor_id: int
    receiver_id: int
    status: str
    reject_reason: Optional[str] = None
    viewed_by_donor: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DonorRequestRead(RequestRead):
    receiver: Contact


class ReceiverRequestRead(RequestRead):
    donor: Optional[Contact] = None


class RequestDecision(BaseModel):
    status: str
    reason: Optional[str] = None
