import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    TIMESTAMP,
    Date,
    Time,
    ForeignKey,
    Enum,
    UniqueConstraint,
    func,
    false,
    true,
    Boolean,
)
from sqlalchemy.orm import relationship
from .database import Base


class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"


class NotificationType(str, enum.Enum):
    SLOT_PROPOSAL = "SLOT_PROPOSAL"
    SLOT_AVAILABLE = "SLOT_AVAILABLE"
    SLOT_CANCELLED = "SLOT_CANCELLED"


class NotificationStatus(str, enum.Enum):
    UNREAD = "UNREAD"
    READ = "READ"
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"


class RecipientAction(str, enum.Enum):
    ACCEPTED = "ACCEPTED"
    REFUSED = "REFUSED"


# Types a recipient may accept or refuse.
RESPONDABLE_TYPES = frozenset({NotificationType.SLOT_PROPOSAL, NotificationType.SLOT_AVAILABLE})


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), nullable=False, server_default=UserRole.user.value, index=True)
    availability_alerts_enabled = Column(Boolean, nullable=False, default=True, server_default=true())
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    push_subscriptions = relationship("PushSubscription", back_populates="user", cascade="all, delete-orphan")
    recipient_records = relationship(
        "NotificationRecipient",
        back_populates="user",
        cascade="all, delete-orphan",
    )


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(Text, unique=True, nullable=False)
    p256dh_key = Column(Text, nullable=False)
    auth_key = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)
    last_used_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="push_subscriptions")


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(Enum(NotificationType), nullable=False, index=True)
    status = Column(
        Enum(NotificationStatus),
        nullable=False,
        server_default=NotificationStatus.UNREAD.value,
    )
    slot_date = Column(Date, nullable=False, index=True)
    slot_time_start = Column(Time, nullable=False)
    slot_time_end = Column(Time, nullable=False)
    slot_location = Column(String(255), nullable=False)
    slot_description = Column(Text, nullable=True)
    sent_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False, index=True)
    sent_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    sender = relationship("User", foreign_keys=[sent_by])
    recipients = relationship("NotificationRecipient", back_populates="notification", cascade="all, delete-orphan")


class NotificationRecipient(Base):
    __tablename__ = "notification_recipients"
    __table_args__ = (UniqueConstraint("notification_id", "user_id", name="uq_notification_recipient"),)

    id = Column(Integer, primary_key=True, index=True)
    notification_id = Column(
        Integer,
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    received = Column(Boolean, nullable=False, default=False, server_default=false())
    clicked = Column(Boolean, nullable=False, default=False, server_default=false())
    clicked_at = Column(TIMESTAMP(timezone=True), nullable=True)
    action = Column(Enum(RecipientAction), nullable=True, index=True)
    action_at = Column(TIMESTAMP(timezone=True), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), nullable=False)

    notification = relationship("Notification", back_populates="recipients")
    user = relationship("User", back_populates="recipient_records")
