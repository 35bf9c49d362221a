from typing import Iterable, Optional

from sqlalchemy.orm import Session

from . import models
from .config import settings
from .errors import NotificationNotFoundError, NotificationValidationError


def _dedupe(ids: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for value in ids:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def _proposal_recipients(db: Session, recipient_ids: Optional[list[int]]) -> list[int]:
    ids = _dedupe(recipient_ids or [])
    if not ids:
        raise NotificationValidationError("SLOT_PROPOSAL nécessite au moins un destinataire (recipientIds).")
    limit = settings.proposal_max_recipients
    if len(ids) > limit:
        raise NotificationValidationError(f"Maximum {limit} destinataires pour SLOT_PROPOSAL.")

    known = {row.id for row in db.query(models.User.id).filter(models.User.id.in_(ids)).all()}
    unknown = [value for value in ids if value not in known]
    if unknown:
        raise NotificationValidationError(
            "Destinataires inconnus: " + ", ".join(str(value) for value in unknown)
        )
    return ids


def _availability_recipients(db: Session) -> list[int]:
    rows = (
        db.query(models.User.id)
        .filter(models.User.availability_alerts_enabled.is_(True))
        .order_by(models.User.id.asc())
        .all()
    )
    return [row.id for row in rows]


def _cancellation_recipients(db: Session, slot_id: Optional[int]) -> list[int]:
    if slot_id is None:
        raise NotificationValidationError("SLOT_CANCELLED nécessite un créneau (slotId).")
    slot_exists = db.query(models.Notification.id).filter(models.Notification.id == slot_id).first()
    if slot_exists is None:
        raise NotificationNotFoundError("Créneau introuvable.")
    rows = (
        db.query(models.NotificationRecipient.user_id)
        .filter(
            models.NotificationRecipient.notification_id == slot_id,
            models.NotificationRecipient.action == models.RecipientAction.ACCEPTED,
        )
        .order_by(models.NotificationRecipient.user_id.asc())
        .all()
    )
    return _dedupe(row.user_id for row in rows)


def resolve_recipients(
    db: Session,
    notification_type: models.NotificationType,
    *,
    recipient_ids: Optional[list[int]] = None,
    slot_id: Optional[int] = None,
) -> list[int]:
    """Compute the user ids a notification of `notification_type` goes to.

    - SLOT_PROPOSAL: the explicit `recipient_ids`, deduplicated and capped.
    - SLOT_AVAILABLE: every user with availability alerts enabled right now.
    - SLOT_CANCELLED: every user who accepted the slot notification `slot_id`.

    Raises NotificationValidationError when the inputs are invalid or nobody matches,
    NotificationNotFoundError when `slot_id` does not reference a notification.
    """
    if notification_type == models.NotificationType.SLOT_PROPOSAL:
        ids = _proposal_recipients(db, recipient_ids)
    elif notification_type == models.NotificationType.SLOT_AVAILABLE:
        ids = _availability_recipients(db)
    elif notification_type == models.NotificationType.SLOT_CANCELLED:
        ids = _cancellation_recipients(db, slot_id)
    else:
        raise NotificationValidationError("Type de notification invalide.")

    if not ids:
        raise NotificationValidationError("Aucun destinataire trouvé.")
    return ids
