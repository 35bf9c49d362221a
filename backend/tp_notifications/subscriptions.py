from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .logging_utils import log_event


def _find_by_endpoint(db: Session, endpoint: str) -> models.PushSubscription | None:
    return db.query(models.PushSubscription).filter(models.PushSubscription.endpoint == endpoint).first()


def register_subscription(
    db: Session,
    user: models.User,
    payload: schemas.PushSubscriptionCreate,
) -> tuple[models.PushSubscription, bool]:
    """Store a browser push subscription for `user`.

    Returns `(subscription, created)`. A known endpoint only gets `last_used_at` refreshed.
    """
    existing = _find_by_endpoint(db, payload.endpoint)
    if existing:
        return _refresh(db, existing), False

    subscription = models.PushSubscription(
        user_id=user.id,
        endpoint=payload.endpoint,
        p256dh_key=payload.keys.p256dh,
        auth_key=payload.keys.auth,
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration of the same endpoint.
        db.rollback()
        existing = _find_by_endpoint(db, payload.endpoint)
        if existing is None:
            raise
        return _refresh(db, existing), False
    db.refresh(subscription)
    log_event("push_subscription_created", user_id=user.id, subscription_id=subscription.id)
    return subscription, True


def _refresh(db: Session, subscription: models.PushSubscription) -> models.PushSubscription:
    subscription.last_used_at = datetime.now(timezone.utc)
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    log_event("push_subscription_refreshed", user_id=subscription.user_id, subscription_id=subscription.id)
    return subscription


def remove_subscription(db: Session, user: models.User, endpoint: str) -> bool:
    deleted = (
        db.query(models.PushSubscription)
        .filter(models.PushSubscription.endpoint == endpoint, models.PushSubscription.user_id == user.id)
        .delete(synchronize_session=False)
    )
    db.commit()
    if deleted:
        log_event("push_subscription_removed", user_id=user.id)
    return bool(deleted)
