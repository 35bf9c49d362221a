from sqlalchemy import case, func
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotificationNotFoundError
from .tracking import _slot


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def notification_history(db: Session) -> list[schemas.NotificationHistoryItem]:
    """Every notification, newest first, with counts folded from its recipient rows."""
    recipient = models.NotificationRecipient
    metrics_subquery = (
        db.query(
            recipient.notification_id.label("notification_id"),
            func.count(recipient.id).label("total"),
            _count_where(recipient.received.is_(True)).label("received"),
            _count_where(recipient.clicked.is_(True)).label("clicked"),
            _count_where(recipient.action == models.RecipientAction.ACCEPTED).label("accepted"),
            _count_where(recipient.action == models.RecipientAction.REFUSED).label("refused"),
        )
        .group_by(recipient.notification_id)
        .subquery()
    )

    rows = (
        db.query(
            models.Notification,
            models.User.email.label("sender_email"),
            metrics_subquery.c.total,
            metrics_subquery.c.received,
            metrics_subquery.c.clicked,
            metrics_subquery.c.accepted,
            metrics_subquery.c.refused,
        )
        .outerjoin(models.User, models.User.id == models.Notification.sent_by)
        .outerjoin(metrics_subquery, metrics_subquery.c.notification_id == models.Notification.id)
        .order_by(models.Notification.sent_at.desc(), models.Notification.id.desc())
        .all()
    )

    return [
        schemas.NotificationHistoryItem(
            id=row.Notification.id,
            type=row.Notification.type,
            slot=_slot(row.Notification),
            sent_at=row.Notification.sent_at,
            sent_by=schemas.SenderResponse(id=row.Notification.sent_by, email=row.sender_email or "Unknown"),
            metrics=schemas.NotificationMetrics(
                total_recipients=int(row.total or 0),
                received=int(row.received or 0),
                clicked=int(row.clicked or 0),
                accepted=int(row.accepted or 0),
                refused=int(row.refused or 0),
            ),
        )
        for row in rows
    ]


def list_users(db: Session) -> list[schemas.AdminUserResponse]:
    users = db.query(models.User).order_by(models.User.email.asc()).all()
    return [schemas.AdminUserResponse.model_validate(user, from_attributes=True) for user in users]


def available_slots(db: Session) -> list[schemas.SlotOption]:
    """Slots with at least one accepted recipient, i.e. the ones a cancellation can target."""
    accepted_count = func.count(models.NotificationRecipient.id).label("accepted_count")
    rows = (
        db.query(models.Notification, accepted_count)
        .join(
            models.NotificationRecipient,
            models.NotificationRecipient.notification_id == models.Notification.id,
        )
        .filter(models.NotificationRecipient.action == models.RecipientAction.ACCEPTED)
        .group_by(models.Notification.id)
        .order_by(models.Notification.slot_date.desc(), models.Notification.id.desc())
        .all()
    )
    options = []
    for notification, count in rows:
        start = notification.slot_time_start.strftime("%H:%M")
        end = notification.slot_time_end.strftime("%H:%M")
        options.append(
            schemas.SlotOption(
                id=notification.id,
                label=f"{notification.slot_date.isoformat()} - {start}-{end} - {notification.slot_location}",
                date=notification.slot_date,
                start_time=notification.slot_time_start,
                end_time=notification.slot_time_end,
                location=notification.slot_location,
                recipient_count=int(count or 0),
            )
        )
    return options


def slot_recipients(db: Session, notification_id: int) -> list[schemas.AdminUserResponse]:
    if db.query(models.Notification.id).filter(models.Notification.id == notification_id).first() is None:
        raise NotificationNotFoundError("Créneau introuvable.")
    users = (
        db.query(models.User)
        .join(models.NotificationRecipient, models.NotificationRecipient.user_id == models.User.id)
        .filter(
            models.NotificationRecipient.notification_id == notification_id,
            models.NotificationRecipient.action == models.RecipientAction.ACCEPTED,
        )
        .order_by(models.User.email.asc())
        .all()
    )
    return [schemas.AdminUserResponse.model_validate(user, from_attributes=True) for user in users]
