from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .models import NotificationStatus, NotificationType, RecipientAction, UserRole


class CamelModel(BaseModel):
    """Base for payloads exchanged with the admin UI, which speaks camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===================== AUTH =====================


class UserCreate(BaseModel):
    email: EmailStr
    password: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        if not any(ch.isalpha() for ch in v) or not any(ch.isdigit() for ch in v):
            raise ValueError("Password must include letters and numbers")
        return v


class UserRegister(UserCreate):
    confirm_password: str

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, v: str, info):
        password = info.data.get("password") if hasattr(info, "data") else None
        if password and v != password:
            raise ValueError("Passwords do not match")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str
    role: UserRole
    user_id: int


class TokenData(BaseModel):
    email: Optional[str] = None
    role: Optional[UserRole] = None
    user_id: Optional[int] = None


class UserResponse(BaseModel):
    id: int
    email: EmailStr
    role: UserRole
    availability_alerts_enabled: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PreferencesResponse(BaseModel):
    availability_alerts_enabled: bool


class PreferencesUpdate(BaseModel):
    availability_alerts_enabled: bool


# ===================== PUSH SUBSCRIPTIONS =====================


class PushSubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscriptionCreate(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2048)
    keys: PushSubscriptionKeys

    @field_validator("endpoint")
    @classmethod
    def endpoint_is_https(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("https://"):
            raise ValueError("endpoint must be an https URL")
        return v


class PushSubscriptionDelete(BaseModel):
    endpoint: str = Field(..., min_length=1, max_length=2048)

    @field_validator("endpoint")
    @classmethod
    def endpoint_stripped(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("endpoint is required")
        return v


class SubscriptionResponse(BaseModel):
    message: str
    id: int


class MessageResponse(BaseModel):
    message: str


class VapidPublicKeyResponse(BaseModel):
    public_key: Optional[str] = None


# ===================== TRACKING =====================


class TrackClickRequest(BaseModel):
    notification_id: int
    user_id: int


class TrackReadRequest(BaseModel):
    notification_id: int


class RecipientActionResponse(BaseModel):
    notification_id: int
    action: RecipientAction
    action_at: datetime


# ===================== DISPATCH =====================


class SlotInput(CamelModel):
    date: date
    start_time: time
    end_time: time
    location: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("location")
    @classmethod
    def location_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("location is required")
        return v

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self


class SendNotificationRequest(CamelModel):
    type: NotificationType
    slot: SlotInput
    recipient_ids: Optional[List[int]] = None
    slot_id: Optional[int] = None


class FailedDelivery(CamelModel):
    user_id: int
    email: str
    reason: str


class DeliveryReport(CamelModel):
    notification_id: int
    total_recipients: int
    push_notifications_sent: int
    failed_deliveries: int
    recipients_without_subscription: int = 0
    failed_reasons: Optional[List[FailedDelivery]] = None


# ===================== HISTORY / ADMIN READS =====================


class SlotResponse(CamelModel):
    id: int
    date: date
    start_time: time
    end_time: time
    location: str
    description: Optional[str] = None


class SenderResponse(CamelModel):
    id: Optional[int] = None
    email: str


class NotificationMetrics(CamelModel):
    total_recipients: int
    received: int
    clicked: int
    accepted: int
    refused: int


class NotificationHistoryItem(CamelModel):
    id: int
    type: NotificationType
    slot: SlotResponse
    sent_at: datetime
    sent_by: SenderResponse
    metrics: NotificationMetrics


class AdminUserResponse(CamelModel):
    id: int
    email: str
    role: UserRole
    availability_alerts_enabled: bool
    created_at: Optional[datetime] = None


class SlotOption(CamelModel):
    id: int
    label: str
    date: date
    start_time: time
    end_time: time
    location: str
    recipient_count: int


# ===================== USER INBOX =====================


class UserNotificationResponse(CamelModel):
    id: int
    type: NotificationType
    status: NotificationStatus
    title: str
    message: str
    slot: SlotResponse
    sent_at: datetime
    received: bool
    clicked: bool
    action: Optional[RecipientAction] = None
    action_at: Optional[datetime] = None
