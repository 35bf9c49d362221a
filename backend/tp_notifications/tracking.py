from datetime import datetime, timezone

from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotificationNotFoundError, NotificationValidationError
from .logging_utils import log_event
from .push_templates import render_push_message


def _now() -> datetime:
    return datetime.now(timezone.utc)


def mark_read(db: Session, notification_id: int) -> None:
    updated = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id)
        .update({"status": models.NotificationStatus.READ}, synchronize_session=False)
    )
    if not updated:
        db.rollback()
        raise NotificationNotFoundError("Notification introuvable.")
    db.commit()
    log_event("notification_read", notification_id=notification_id)


def mark_clicked(db: Session, notification_id: int, user_id: int) -> int:
    """Flag the (notification, user) recipient row as clicked. Returns the number of rows touched."""
    updated = (
        db.query(models.NotificationRecipient)
        .filter(
            models.NotificationRecipient.notification_id == notification_id,
            models.NotificationRecipient.user_id == user_id,
        )
        .update({"clicked": True, "clicked_at": _now()}, synchronize_session=False)
    )
    db.commit()
    log_event("notification_clicked", notification_id=notification_id, user_id=user_id, matched=updated)
    return int(updated or 0)


def record_action(
    db: Session,
    notification_id: int,
    user_id: int,
    action: models.RecipientAction,
) -> models.NotificationRecipient:
    recipient = (
        db.query(models.NotificationRecipient)
        .join(models.Notification, models.Notification.id == models.NotificationRecipient.notification_id)
        .filter(
            models.NotificationRecipient.notification_id == notification_id,
            models.NotificationRecipient.user_id == user_id,
        )
        .first()
    )
    if recipient is None:
        raise NotificationNotFoundError("Notification introuvable.")
    if recipient.notification.type not in models.RESPONDABLE_TYPES:
        raise NotificationValidationError("Cette notification n'attend pas de réponse.")

    recipient.action = action
    recipient.action_at = _now()
    db.add(recipient)
    db.commit()
    db.refresh(recipient)
    log_event("notification_action", notification_id=notification_id, user_id=user_id, action=action.value)
    return recipient


def _slot(notification: models.Notification) -> schemas.SlotResponse:
    return schemas.SlotResponse(
        id=notification.id,
        date=notification.slot_date,
        start_time=notification.slot_time_start,
        end_time=notification.slot_time_end,
        location=notification.slot_location,
        description=notification.slot_description,
    )


def list_user_notifications(db: Session, user: models.User) -> list[schemas.UserNotificationResponse]:
    rows = (
        db.query(models.Notification, models.NotificationRecipient)
        .join(
            models.NotificationRecipient,
            models.NotificationRecipient.notification_id == models.Notification.id,
        )
        .filter(models.NotificationRecipient.user_id == user.id)
        .order_by(models.Notification.sent_at.desc(), models.Notification.id.desc())
        .all()
    )
    items = []
    for notification, recipient in rows:
        title, message = render_push_message(notification.type, notification.slot_date)
        items.append(
            schemas.UserNotificationResponse(
                id=notification.id,
                type=notification.type,
                status=notification.status,
                title=title,
                message=message,
                slot=_slot(notification),
                sent_at=notification.sent_at,
                received=bool(recipient.received),
                clicked=bool(recipient.clicked),
                action=recipient.action,
                action_at=recipient.action_at,
            )
        )
    return items
