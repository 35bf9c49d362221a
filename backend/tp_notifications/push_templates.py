import json
from datetime import date

from . import models
from .config import settings


_TEMPLATES: dict[models.NotificationType, tuple[str, str]] = {
    models.NotificationType.SLOT_PROPOSAL: (
        "Proposition de créneau",
        "Un nouveau créneau vous est proposé le {date}",
    ),
    models.NotificationType.SLOT_AVAILABLE: (
        "Créneau disponible",
        "Un créneau correspondant à vos alertes est disponible le {date}",
    ),
    models.NotificationType.SLOT_CANCELLED: (
        "Créneau annulé",
        "Votre créneau du {date} a été annulé",
    ),
}


def _format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def render_push_message(notification_type: models.NotificationType, slot_date: date) -> tuple[str, str]:
    title, message = _TEMPLATES[models.NotificationType(notification_type)]
    return title, message.format(date=_format_date(slot_date))


def notification_url(notification_id: int) -> str:
    return f"{settings.app_base_url.rstrip('/')}/notifications/{notification_id}"


def render_push_payload(notification: models.Notification) -> str:
    """JSON body read by the service worker's `push` handler (title, message, url, tag)."""
    title, message = render_push_message(notification.type, notification.slot_date)
    return json.dumps(
        {
            "title": title,
            "message": message,
            "url": notification_url(notification.id),
            "tag": f"notification-{notification.id}",
            "notification_id": notification.id,
            "type": models.NotificationType(notification.type).value,
        },
        ensure_ascii=False,
    )
