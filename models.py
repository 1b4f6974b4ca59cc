from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    full_name: str
    contact_number: str
    address: str
    role: str  # donor | receiver
    password_hash: str
    reset_token: Optional[str] = Field(default=None, index=True)
    reset_expires: Optional[datetime] = None


class Donation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    donor_id: int = Field(foreign_key="user.id", index=True)

    medicine_name: str
    quantity: str
    medicine_form: str
    strength: str
    manufacturing_date: date
    expiry_date: date
    donor_name: str
    donor_phone_number: str
    donor_address: str
    images: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    status: str = "active"  # active | expired
    created_at: datetime = Field(default_factory=utcnow)


class Request(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    prescription_image: str
    donation_id: int = Field(foreign_key="donation.id", index=True)
    donor_id: int = Field(foreign_key="user.id", index=True)
    receiver_id: int = Field(foreign_key="user.id", index=True)

    # copied from the donation when the request is made
    medicine_name: str
    strength: Optional[str] = None

    status: str = "pending"  # pending | approved | rejected
    reject_reason: Optional[str] = None
    viewed_by_donor: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    message: str
    type: str  # medicine_request | request_update
    read: bool = False
    meta: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
