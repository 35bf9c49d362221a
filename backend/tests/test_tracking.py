from tp_notifications import models


def _propose(helpers, admin_token: str, user_ids: list[int], days: int = 7) -> int:
    resp = helpers["send"](
        admin_token,
        {"type": "SLOT_PROPOSAL", "slot": helpers["slot"](days=days), "recipientIds": user_ids},
    )
    assert resp.status_code == 200
    return resp.json()["notificationId"]


def test_track_click_marks_recipient_row(helpers):
    client = helpers["client"]
    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("click@tp-notif.fr")
    notification_id = _propose(helpers, admin_token, [user["user_id"]])

    payload = {"notification_id": notification_id, "user_id": user["user_id"]}
    first = client.post("/api/notifications/track-click", json=payload)
    assert first.status_code == 200

    db = helpers["db"]
    recipient = db.query(models.NotificationRecipient).one()
    assert recipient.clicked is True
    assert recipient.clicked_at is not None

    again = client.post("/api/notifications/track-click", json=payload)
    assert again.status_code == 200
    db.expire_all()
    assert db.query(models.NotificationRecipient).one().clicked is True


def test_track_click_without_matching_row_is_not_an_error(helpers):
    resp = helpers["client"].post("/api/notifications/track-click", json={"notification_id": 99, "user_id": 42})
    assert resp.status_code == 200


def test_track_click_rejects_malformed_body(helpers):
    resp = helpers["client"].post("/api/notifications/track-click", json={"notification_id": "abc"})
    assert resp.status_code == 400


def test_track_read_sets_status(helpers):
    client = helpers["client"]
    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("read@tp-notif.fr")
    notification_id = _propose(helpers, admin_token, [user["user_id"]])

    resp = client.post(
        "/api/notifications/track-read",
        json={"notification_id": notification_id},
        headers=helpers["auth_header"](user["access_token"]),
    )
    assert resp.status_code == 200
    notification = helpers["db"].query(models.Notification).one()
    assert notification.status == models.NotificationStatus.READ


def test_track_read_requires_auth_and_known_notification(helpers):
    client = helpers["client"]
    user = helpers["register_user"]("reader@tp-notif.fr")

    anonymous = client.post("/api/notifications/track-read", json={"notification_id": 1})
    assert anonymous.status_code == 401

    missing = client.post(
        "/api/notifications/track-read",
        json={"notification_id": 12345},
        headers=helpers["auth_header"](user["access_token"]),
    )
    assert missing.status_code == 404


def test_accept_then_refuse_keeps_latest_action(helpers):
    client = helpers["client"]
    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("decide@tp-notif.fr")
    notification_id = _propose(helpers, admin_token, [user["user_id"]])
    headers = helpers["auth_header"](user["access_token"])

    accepted = client.post(f"/api/notifications/{notification_id}/accept", headers=headers)
    assert accepted.status_code == 200
    assert accepted.json()["action"] == "ACCEPTED"

    refused = client.post(f"/api/notifications/{notification_id}/refuse", headers=headers)
    assert refused.status_code == 200
    assert refused.json()["action"] == "REFUSED"

    recipient = helpers["db"].query(models.NotificationRecipient).one()
    assert recipient.action == models.RecipientAction.REFUSED
    assert recipient.action_at is not None


def test_action_on_someone_elses_notification_is_not_found(helpers):
    client = helpers["client"]
    admin_token = helpers["make_admin"]()
    target = helpers["register_user"]("target@tp-notif.fr")
    outsider = helpers["register_user"]("outsider@tp-notif.fr")
    notification_id = _propose(helpers, admin_token, [target["user_id"]])

    resp = client.post(
        f"/api/notifications/{notification_id}/accept",
        headers=helpers["auth_header"](outsider["access_token"]),
    )
    assert resp.status_code == 404
    assert helpers["db"].query(models.NotificationRecipient).one().action is None


def test_cancellation_cannot_be_accepted(helpers):
    client = helpers["client"]
    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("cancelled@tp-notif.fr")
    headers = helpers["auth_header"](user["access_token"])
    slot_id = _propose(helpers, admin_token, [user["user_id"]])
    client.post(f"/api/notifications/{slot_id}/accept", headers=headers)

    cancelled = helpers["send"](
        admin_token,
        {"type": "SLOT_CANCELLED", "slot": helpers["slot"](), "slotId": slot_id},
    )
    cancellation_id = cancelled.json()["notificationId"]

    resp = client.post(f"/api/notifications/{cancellation_id}/accept", headers=headers)
    assert resp.status_code == 400


def test_my_notifications_lists_own_rows_newest_first(helpers):
    client = helpers["client"]
    admin_token = helpers["make_admin"]()
    user = helpers["register_user"]("inbox@tp-notif.fr")
    other = helpers["register_user"]("elsewhere@tp-notif.fr")
    first_id = _propose(helpers, admin_token, [user["user_id"]], days=3)
    second_id = _propose(helpers, admin_token, [user["user_id"]], days=5)
    _propose(helpers, admin_token, [other["user_id"]])

    client.post(f"/api/notifications/{first_id}/accept", headers=helpers["auth_header"](user["access_token"]))

    resp = client.get("/api/me/notifications", headers=helpers["auth_header"](user["access_token"]))
    assert resp.status_code == 200
    items = resp.json()
    assert [item["id"] for item in items] == [second_id, first_id]
    assert items[0]["title"] == "Proposition de créneau"
    assert items[0]["slot"]["location"] == "Place de la Gare"
    assert items[0]["action"] is None
    assert items[1]["action"] == "ACCEPTED"
    assert items[1]["message"].startswith("Un nouveau créneau vous est proposé le ")
