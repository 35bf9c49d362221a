import json
import threading
from types import SimpleNamespace

import pytest
from pywebpush import WebPushException

from tp_notifications import models, push_service
from tp_notifications.config import settings


@pytest.fixture()
def webpush_mode(monkeypatch):
    monkeypatch.setattr(settings, "push_delivery_mode", "webpush")
    monkeypatch.setattr(settings, "vapid_private_key", "test-vapid-private-key")
    monkeypatch.setattr(settings, "vapid_subject", "mailto:admin@tp-notif.fr")


def _fake_webpush(responses: dict, calls: list):
    lock = threading.Lock()

    def _send(subscription_info, data, vapid_private_key, vapid_claims, ttl, timeout):
        with lock:
            calls.append({"endpoint": subscription_info["endpoint"], "data": json.loads(data), "claims": vapid_claims})
        status_code = responses.get(subscription_info["endpoint"], 201)
        if status_code >= 400:
            raise WebPushException(
                f"Push failed: {status_code}",
                response=SimpleNamespace(status_code=status_code, text="error"),
            )
        return SimpleNamespace(status_code=status_code)

    return _send


def test_delivery_mixed_outcomes(helpers, monkeypatch, webpush_mode):
    admin_token = helpers["make_admin"]()
    ok_user = helpers["register_user"]("ok@tp-notif.fr")
    gone_user = helpers["register_user"]("gone@tp-notif.fr")
    broken_user = helpers["register_user"]("broken@tp-notif.fr")
    silent_user = helpers["register_user"]("silent@tp-notif.fr")

    ok_endpoint = "https://push.tp-notif.fr/ok"
    gone_endpoint = "https://push.tp-notif.fr/gone"
    broken_endpoint = "https://push.tp-notif.fr/broken"
    helpers["subscribe"](ok_user["access_token"], ok_endpoint)
    helpers["subscribe"](gone_user["access_token"], gone_endpoint)
    helpers["subscribe"](broken_user["access_token"], broken_endpoint)

    calls: list = []
    monkeypatch.setattr(
        push_service,
        "webpush",
        _fake_webpush({gone_endpoint: 410, broken_endpoint: 500}, calls),
    )

    recipient_ids = [ok_user["user_id"], gone_user["user_id"], broken_user["user_id"], silent_user["user_id"]]
    resp = helpers["send"](
        admin_token,
        {"type": "SLOT_PROPOSAL", "slot": helpers["slot"](), "recipientIds": recipient_ids},
    )
    assert resp.status_code == 200
    report = resp.json()
    assert report["totalRecipients"] == 4
    assert report["pushNotificationsSent"] == 1
    assert report["failedDeliveries"] == 2
    assert report["recipientsWithoutSubscription"] == 1

    reasons = {item["userId"]: item for item in report["failedReasons"]}
    assert reasons[gone_user["user_id"]]["reason"] == "subscription_expired"
    assert reasons[gone_user["user_id"]]["email"] == "gone@tp-notif.fr"
    assert broken_user["user_id"] in reasons

    assert len(calls) == 3
    payload = calls[0]["data"]
    assert payload["title"] == "Proposition de créneau"
    assert payload["url"].endswith(f"/notifications/{report['notificationId']}")
    assert payload["tag"] == f"notification-{report['notificationId']}"

    db = helpers["db"]
    endpoints = {row.endpoint for row in db.query(models.PushSubscription).all()}
    assert endpoints == {ok_endpoint, broken_endpoint}

    received = {
        row.user_id: row.received
        for row in db.query(models.NotificationRecipient).filter_by(notification_id=report["notificationId"])
    }
    assert received == {
        ok_user["user_id"]: True,
        gone_user["user_id"]: False,
        broken_user["user_id"]: False,
        silent_user["user_id"]: False,
    }


def test_received_when_any_subscription_of_user_succeeds(helpers, monkeypatch, webpush_mode):
    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("twodevices@tp-notif.fr")
    phone = "https://push.tp-notif.fr/phone"
    laptop = "https://push.tp-notif.fr/laptop"
    helpers["subscribe"](user["access_token"], phone)
    helpers["subscribe"](user["access_token"], laptop)

    calls: list = []
    monkeypatch.setattr(push_service, "webpush", _fake_webpush({laptop: 404}, calls))

    resp = helpers["send"](
        admin_token,
        {"type": "SLOT_PROPOSAL", "slot": helpers["slot"](), "recipientIds": [user["user_id"]]},
    )
    report = resp.json()
    assert report["pushNotificationsSent"] == 1
    assert report["failedDeliveries"] == 1

    recipient = helpers["db"].query(models.NotificationRecipient).one()
    assert recipient.received is True
    assert [row.endpoint for row in helpers["db"].query(models.PushSubscription).all()] == [phone]


def test_vapid_claims_are_not_shared_between_sends(helpers, monkeypatch, webpush_mode):
    admin_token = helpers["make_admin"]()
    users = [helpers["register_user"](f"claims{i}@tp-notif.fr") for i in range(3)]
    for user in users:
        helpers["subscribe"](user["access_token"], f"https://push.tp-notif.fr/claims/{user['user_id']}")

    calls: list = []
    monkeypatch.setattr(push_service, "webpush", _fake_webpush({}, calls))
    resp = helpers["send"](
        admin_token,
        {"type": "SLOT_PROPOSAL", "slot": helpers["slot"](), "recipientIds": [u["user_id"] for u in users]},
    )
    assert resp.json()["pushNotificationsSent"] == 3
    assert len({id(call["claims"]) for call in calls}) == 3
    assert all(call["claims"] == {"sub": "mailto:admin@tp-notif.fr"} for call in calls)


def test_missing_private_key_falls_back_to_log_mode(helpers, monkeypatch):
    monkeypatch.setattr(settings, "push_delivery_mode", "webpush")
    monkeypatch.setattr(settings, "vapid_private_key", None)

    def _unexpected(**_kwargs):
        raise AssertionError("webpush must not be called without a private key")

    monkeypatch.setattr(push_service, "webpush", _unexpected)
    assert push_service.effective_delivery_mode() == "log"

    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("fallback@tp-notif.fr")
    helpers["subscribe"](user["access_token"], "https://push.tp-notif.fr/fallback")

    resp = helpers["send"](
        admin_token,
        {"type": "SLOT_PROPOSAL", "slot": helpers["slot"](), "recipientIds": [user["user_id"]]},
    )
    assert resp.json()["pushNotificationsSent"] == 1


def test_send_batch_respects_parallelism_limit(monkeypatch, webpush_mode):
    monkeypatch.setattr(settings, "push_max_parallel", 2)
    active = 0
    peak = 0
    lock = threading.Lock()
    barrier_hits = threading.Event()

    def _slow_send(target, payload_json):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        barrier_hits.wait(0.05)
        with lock:
            active -= 1

    monkeypatch.setattr(push_service, "send_web_push", _slow_send)
    targets = [
        push_service.PushTarget(
            subscription_id=i,
            user_id=i,
            email=f"u{i}@tp-notif.fr",
            endpoint=f"https://push.tp-notif.fr/{i}",
            p256dh_key="k",
            auth_key="a",
        )
        for i in range(6)
    ]
    outcomes = push_service.send_batch(targets, "{}")

    assert [outcome.target.subscription_id for outcome in outcomes] == list(range(6))
    assert all(outcome.ok for outcome in outcomes)
    assert peak <= 2
