from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from . import models, schemas
from .config import settings
from .errors import NotificationValidationError
from .logging_utils import log_event
from .push_service import deliver_notification
from .recipients import resolve_recipients


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_today() -> date:
    """Today's date where the volunteers are (APP_TIMEZONE), not in UTC."""
    return _utcnow().astimezone(ZoneInfo(settings.app_timezone)).date()


def _ensure_slot_not_past(slot: schemas.SlotInput) -> None:
    if slot.date < _local_today():
        raise NotificationValidationError("La date ne peut pas être dans le passé.")


def create_notification(
    db: Session,
    *,
    sender: models.User,
    notification_type: models.NotificationType,
    slot: schemas.SlotInput,
    recipient_ids: list[int],
) -> models.Notification:
    """Persist the notification and one unflagged recipient row per id in a single commit."""
    notification = models.Notification(
        type=notification_type,
        status=models.NotificationStatus.UNREAD,
        slot_date=slot.date,
        slot_time_start=slot.start_time,
        slot_time_end=slot.end_time,
        slot_location=slot.location,
        slot_description=slot.description or None,
        sent_at=_utcnow(),
        sent_by=sender.id,
    )
    db.add(notification)
    try:
        db.flush()
        db.add_all(
            models.NotificationRecipient(
                notification_id=notification.id,
                user_id=user_id,
                received=False,
                clicked=False,
            )
            for user_id in recipient_ids
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(notification)
    return notification


def send_notification(
    db: Session,
    sender: models.User,
    payload: schemas.SendNotificationRequest,
) -> schemas.DeliveryReport:
    """Resolve recipients, write the notification, push it, and return the delivery report."""
    _ensure_slot_not_past(payload.slot)
    recipient_ids = resolve_recipients(
        db,
        payload.type,
        recipient_ids=payload.recipient_ids,
        slot_id=payload.slot_id,
    )
    notification = create_notification(
        db,
        sender=sender,
        notification_type=payload.type,
        slot=payload.slot,
        recipient_ids=recipient_ids,
    )
    log_event(
        "notification_created",
        notification_id=notification.id,
        notification_type=payload.type.value,
        sender_id=sender.id,
        recipients=len(recipient_ids),
        slot_id=payload.slot_id,
    )
    return deliver_notification(db, notification, recipient_ids)
