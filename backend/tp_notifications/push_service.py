"""
Web Push delivery for dispatched notifications.

Each push subscription of each recipient gets one encrypted, VAPID-signed request (pywebpush).
Requests run in a bounded thread pool; all database writes happen afterwards on the caller's
session. A 404/410 answer means the browser dropped the subscription, so the row is deleted.
Nothing is retried here.

With PUSH_DELIVERY_MODE=log (or when no VAPID private key is configured) pushes are only
logged and reported as sent.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from pywebpush import WebPushException, webpush
from sqlalchemy.orm import Session

from . import models, schemas
from .config import settings
from .errors import PushDeliveryError, PushSubscriptionGoneError
from .logging_utils import log_event, log_warning
from .push_templates import render_push_payload

REASON_SUBSCRIPTION_EXPIRED = "subscription_expired"

_GONE_STATUS_CODES = (404, 410)


@dataclass(frozen=True)
class PushTarget:
    subscription_id: int
    user_id: int
    email: str
    endpoint: str
    p256dh_key: str
    auth_key: str

    def subscription_info(self) -> dict:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh_key, "auth": self.auth_key}}


@dataclass(frozen=True)
class PushOutcome:
    target: PushTarget
    ok: bool
    gone: bool = False
    reason: str | None = None


def effective_delivery_mode() -> str:
    if settings.push_delivery_mode == "webpush" and not (settings.vapid_private_key or "").strip():
        return "log"
    return settings.push_delivery_mode


def _endpoint_short(endpoint: str) -> str:
    return endpoint[:60]


def send_web_push(target: PushTarget, payload_json: str) -> None:
    try:
        webpush(
            subscription_info=target.subscription_info(),
            data=payload_json,
            vapid_private_key=settings.vapid_private_key,
            # pywebpush adds aud/exp to the claims dict; never share it between threads.
            vapid_claims={"sub": settings.vapid_subject},
            ttl=settings.push_ttl_seconds,
            timeout=settings.push_timeout_seconds,
        )
    except WebPushException as exc:
        response = getattr(exc, "response", None)
        status_code = getattr(response, "status_code", None)
        if status_code in _GONE_STATUS_CODES:
            raise PushSubscriptionGoneError(target.endpoint) from exc
        raise PushDeliveryError(str(exc)) from exc
    except Exception as exc:  # noqa: BLE001
        raise PushDeliveryError(str(exc)) from exc


def log_push(target: PushTarget, payload_json: str) -> None:
    log_event(
        "push_logged_not_sent",
        user_id=target.user_id,
        subscription_id=target.subscription_id,
        endpoint=_endpoint_short(target.endpoint),
        payload=payload_json,
    )


def _attempt(sender: Callable[[PushTarget, str], None], target: PushTarget, payload_json: str) -> PushOutcome:
    try:
        sender(target, payload_json)
    except PushSubscriptionGoneError:
        return PushOutcome(target=target, ok=False, gone=True, reason=REASON_SUBSCRIPTION_EXPIRED)
    except PushDeliveryError as exc:
        return PushOutcome(target=target, ok=False, reason=str(exc) or "push_failed")
    return PushOutcome(target=target, ok=True)


def send_batch(targets: list[PushTarget], payload_json: str) -> list[PushOutcome]:
    if not targets:
        return []
    sender = send_web_push if effective_delivery_mode() == "webpush" else log_push

    outcomes: list[PushOutcome] = []
    max_workers = min(len(targets), settings.push_max_parallel)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_target = {executor.submit(_attempt, sender, target, payload_json): target for target in targets}
        for future in as_completed(future_to_target):
            target = future_to_target[future]
            try:
                outcomes.append(future.result())
            except Exception as exc:  # noqa: BLE001
                log_warning("push_attempt_crashed", subscription_id=target.subscription_id, error=str(exc))
                outcomes.append(PushOutcome(target=target, ok=False, reason=str(exc) or "push_failed"))

    outcomes.sort(key=lambda outcome: outcome.target.subscription_id)
    return outcomes


def _load_targets(db: Session, recipient_ids: list[int]) -> list[PushTarget]:
    rows = (
        db.query(models.PushSubscription, models.User.email)
        .join(models.User, models.User.id == models.PushSubscription.user_id)
        .filter(models.PushSubscription.user_id.in_(recipient_ids))
        .order_by(models.PushSubscription.id.asc())
        .all()
    )
    return [
        PushTarget(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            email=email,
            endpoint=subscription.endpoint,
            p256dh_key=subscription.p256dh_key,
            auth_key=subscription.auth_key,
        )
        for subscription, email in rows
    ]


def deliver_notification(
    db: Session,
    notification: models.Notification,
    recipient_ids: list[int],
) -> schemas.DeliveryReport:
    """Push `notification` to every subscription of `recipient_ids` and record the outcome."""
    targets = _load_targets(db, recipient_ids)
    payload_json = render_push_payload(notification)
    outcomes = send_batch(targets, payload_json)

    delivered_user_ids: set[int] = set()
    refreshed_subscription_ids: list[int] = []
    gone_subscription_ids: list[int] = []
    failures: list[schemas.FailedDelivery] = []

    for outcome in outcomes:
        target = outcome.target
        if outcome.ok:
            delivered_user_ids.add(target.user_id)
            refreshed_subscription_ids.append(target.subscription_id)
            continue
        if outcome.gone:
            gone_subscription_ids.append(target.subscription_id)
            log_event(
                "push_subscription_expired",
                notification_id=notification.id,
                user_id=target.user_id,
                subscription_id=target.subscription_id,
                endpoint=_endpoint_short(target.endpoint),
            )
        else:
            log_warning(
                "push_delivery_failed",
                notification_id=notification.id,
                user_id=target.user_id,
                subscription_id=target.subscription_id,
                endpoint=_endpoint_short(target.endpoint),
                error=outcome.reason,
            )
        failures.append(
            schemas.FailedDelivery(user_id=target.user_id, email=target.email, reason=outcome.reason or "push_failed")
        )

    now = datetime.now(timezone.utc)
    if refreshed_subscription_ids:
        (
            db.query(models.PushSubscription)
            .filter(models.PushSubscription.id.in_(refreshed_subscription_ids))
            .update({"last_used_at": now}, synchronize_session=False)
        )
    if gone_subscription_ids:
        (
            db.query(models.PushSubscription)
            .filter(models.PushSubscription.id.in_(gone_subscription_ids))
            .delete(synchronize_session=False)
        )
    if delivered_user_ids:
        (
            db.query(models.NotificationRecipient)
            .filter(
                models.NotificationRecipient.notification_id == notification.id,
                models.NotificationRecipient.user_id.in_(sorted(delivered_user_ids)),
            )
            .update({"received": True}, synchronize_session=False)
        )
    db.commit()

    users_with_subscription = {target.user_id for target in targets}
    sent = sum(1 for outcome in outcomes if outcome.ok)
    report = schemas.DeliveryReport(
        notification_id=notification.id,
        total_recipients=len(recipient_ids),
        push_notifications_sent=sent,
        failed_deliveries=len(failures),
        recipients_without_subscription=len([uid for uid in recipient_ids if uid not in users_with_subscription]),
        failed_reasons=failures or None,
    )
    log_event(
        "push_batch_completed",
        notification_id=notification.id,
        mode=effective_delivery_mode(),
        subscriptions=len(targets),
        sent=sent,
        failed=len(failures),
        expired=len(gone_subscription_ids),
    )
    return report
