"""Activation state machine: issuance, redemption, status and poll."""

from __future__ import annotations

import pytest

from hwid_key_server.config import ACTIVE_TTL, PENDING_TTL
from hwid_key_server.delivery import Publication
from hwid_key_server.errors import ErrorCode, Mode
from hwid_key_server.records import ActiveLease, PendingGrant


def test_get_key_creates_pending_grant(activation, delivery, store):
    out = activation.get_key("H1")

    assert out.ok and out.status == 200
    assert out.mode == Mode.PENDING_CREATED
    assert out.payload["getKeyLink"] == "https://short.test/p1"
    assert out.payload["expiresIn"] == PENDING_TTL

    grant = PendingGrant.decode(store.get("pending:H1"))
    assert grant.key == delivery.last_key
    assert grant.paste_url == "https://paste.test/p1"
    assert len(grant.key) == 32
    assert delivery.published[0][0] == "HWID KEY - H1"


def test_get_key_is_idempotent_while_pending(activation, delivery, store, clock):
    first = activation.get_key("H1")
    key = delivery.last_key
    clock.advance(60)

    second = activation.get_key("H1")

    assert second.mode == Mode.PENDING_EXISTS
    assert second.payload["getKeyLink"] == first.payload["getKeyLink"]
    assert second.payload["pendingSecondsLeft"] == PENDING_TTL - 60
    assert len(delivery.published) == 1
    assert PendingGrant.decode(store.get("pending:H1")).key == key


def test_shorten_failure_falls_back_to_paste_url(activation, delivery):
    delivery.shorten_fails = True

    out = activation.get_key("H1")

    assert out.mode == Mode.PENDING_CREATED
    assert out.payload["getKeyLink"] == "https://paste.test/p1"


def test_pending_grant_expires_after_window(activation, delivery, clock):
    activation.get_key("H1")
    clock.advance(PENDING_TTL)

    out = activation.get_key("H1")

    assert out.mode == Mode.PENDING_CREATED
    assert len(delivery.published) == 2


def test_redeem_promotes_pending_to_active(activation, delivery, store, clock):
    activation.get_key("H1")
    key = delivery.last_key

    out = activation.redeem("H1", key)

    assert out.mode == Mode.ACTIVATED
    assert out.payload["secondsLeft"] == ACTIVE_TTL
    assert store.get("pending:H1") is None

    lease = ActiveLease.decode(store.get("active:H1"))
    assert lease.activated_at == clock.now_ms()
    assert lease.expires_at == lease.activated_at + 86_400_000
    assert out.payload["expiresAt"] == lease.expires_at

    status = activation.status("H1")
    assert status.payload["valid"] is True
    assert status.payload["secondsLeft"] == ACTIVE_TTL


def test_wrong_key_leaves_grant_intact(activation, delivery):
    activation.get_key("H1")
    key = delivery.last_key

    bad = activation.redeem("H1", "not-the-key")
    assert not bad.ok
    assert bad.error == ErrorCode.INVALID_KEY
    assert bad.status == 401

    assert activation.redeem("H1", key).mode == Mode.ACTIVATED


def test_redeem_without_pending(activation):
    out = activation.redeem("NEVER", "whatever")
    assert out.error == ErrorCode.NO_PENDING_KEY
    assert out.status == 404


def test_redeem_when_already_active(activation, delivery, clock):
    activation.get_key("H1")
    activation.redeem("H1", delivery.last_key)
    clock.advance(100)

    out = activation.redeem("H1", "anything")

    assert out.ok
    assert out.mode == Mode.ALREADY_ACTIVE
    assert out.payload["secondsLeft"] == ACTIVE_TTL - 100


def test_get_key_reports_active_lease(activation, delivery, clock):
    activation.get_key("H1")
    redeemed = activation.redeem("H1", delivery.last_key)
    clock.advance(10)

    out = activation.get_key("H1")

    assert out.mode == Mode.ACTIVE
    assert out.payload["secondsLeft"] == ACTIVE_TTL - 10
    assert out.payload["expiresAt"] == redeemed.payload["expiresAt"]


def test_active_lease_wins_over_stray_pending(activation, delivery, store):
    activation.get_key("H1")
    activation.redeem("H1", delivery.last_key)
    store.set("pending:H1", store.get("active:H1") | {
        "created_at": 1, "paste_id": "x", "paste_url": "u", "delivery_url": "u",
    }, ex=PENDING_TTL)

    assert activation.get_key("H1").mode == Mode.ACTIVE
    assert activation.redeem("H1", "zzz").mode == Mode.ALREADY_ACTIVE


def test_lease_expiry_returns_to_none(activation, delivery, clock):
    activation.get_key("H1")
    activation.redeem("H1", delivery.last_key)
    clock.advance(ACTIVE_TTL)

    status = activation.status("H1")
    assert status.payload == {"ok": True, "valid": False, "secondsLeft": 0, "expiresAt": None}
    assert activation.get_key("H1").mode == Mode.PENDING_CREATED


def test_past_expiry_never_goes_negative(activation, store, clock):
    past = clock.now_ms() - 5_000
    store.set("active:OLD", {"key": "k", "activated_at": past - 1000, "expires_at": past})

    status = activation.status("OLD")

    assert status.payload["valid"] is False
    assert status.payload["secondsLeft"] == 0
    assert status.payload["expiresAt"] == past


def test_malformed_lease_reads_as_absent(activation, store):
    store.set("active:BAD", {"key": "k"}, ex=100)

    assert activation.status("BAD").payload["valid"] is False


def test_poll_includes_kick(activation, admin, clock):
    assert activation.poll("H1").payload["kick"] is None

    admin.kick("H1", "reconnect please")
    out = activation.poll("H1")
    assert out.payload["kick"]["reason"] == "reconnect please"
    assert out.payload["kick"]["at"] == clock.now_ms()

    # not consumed by reading
    assert activation.poll("H1").payload["kick"] is not None

    clock.advance(300)
    assert activation.poll("H1").payload["kick"] is None


def test_publish_failure_propagates(activation, delivery, store):
    delivery.publish_fails = True

    with pytest.raises(RuntimeError, match="paste service down"):
        activation.get_key("H1")
    assert store.get("pending:H1") is None


def test_lost_pending_race_returns_winner(activation, delivery, store):
    """A grant stored between the read and the write wins; the caller gets it."""
    winner = PendingGrant(
        key="winner-key", created_at=1, paste_id="w", paste_url="https://paste.test/w",
        delivery_url="https://short.test/w",
    )
    original_publish = delivery.publish

    def publish_then_race(title, body):
        store.set("pending:H1", winner.to_dict(), ex=PENDING_TTL)
        return original_publish(title, body)

    delivery.publish = publish_then_race

    out = activation.get_key("H1")

    assert out.mode == Mode.PENDING_EXISTS
    assert out.payload["getKeyLink"] == "https://short.test/w"
    assert PendingGrant.decode(store.get("pending:H1")).key == "winner-key"


def test_lost_promotion_race_reports_already_active(activation, delivery, store):
    activation.get_key("H1")
    key = delivery.last_key
    original_move = store.compare_and_move

    def concurrent_redeem_first(*args, **kwargs):
        assert original_move(*args, **kwargs) is True
        return original_move(*args, **kwargs)

    store.compare_and_move = concurrent_redeem_first

    out = activation.redeem("H1", key)

    assert out.mode == Mode.ALREADY_ACTIVE


def test_blacklist_during_publish_discards_new_grant(activation, admin, delivery, store):
    original_publish = delivery.publish

    def publish_while_admin_blacklists(title, body):
        publication = original_publish(title, body)
        admin.blacklist("H1", "abuse")
        return publication

    delivery.publish = publish_while_admin_blacklists

    out = activation.get_key("H1")
    stale_key = delivery.last_key

    assert out.error == ErrorCode.BLACKLISTED
    assert out.payload["info"]["reason"] == "abuse"
    assert store.get("pending:H1") is None

    delivery.publish = original_publish
    admin.unblacklist("H1")

    assert activation.redeem("H1", stale_key).error == ErrorCode.NO_PENDING_KEY
    assert activation.get_key("H1").mode == Mode.PENDING_CREATED
    assert delivery.last_key != stale_key


def test_blacklist_before_promotion_reports_blacklisted(activation, admin, delivery, store):
    activation.get_key("H1")
    key = delivery.last_key
    original_move = store.compare_and_move

    def blacklist_then_move(*args, **kwargs):
        admin.blacklist("H1")
        return original_move(*args, **kwargs)

    store.compare_and_move = blacklist_then_move

    out = activation.redeem("H1", key)

    assert out.error == ErrorCode.BLACKLISTED
    assert store.get("active:H1") is None


def test_blacklist_landing_after_promotion_drops_lease(activation, delivery, store, clock):
    """The blacklist entry is stored but its cleanup has not run yet."""
    activation.get_key("H1")
    key = delivery.last_key
    original_move = store.compare_and_move

    def move_then_blacklist_entry(*args, **kwargs):
        moved = original_move(*args, **kwargs)
        store.set("blacklist:H1", {"reason": "late", "at": clock.now_ms()})
        return moved

    store.compare_and_move = move_then_blacklist_entry

    out = activation.redeem("H1", key)

    assert out.error == ErrorCode.BLACKLISTED
    assert store.get("active:H1") is None
    assert store.get("pending:H1") is None


def test_malformed_pending_is_replaced(activation, delivery, store):
    store.set("pending:H1", {"key": "k"}, ex=PENDING_TTL)

    out = activation.get_key("H1")

    assert out.mode == Mode.PENDING_CREATED
    assert PendingGrant.decode(store.get("pending:H1")).key == delivery.last_key
    assert activation.get_key("H1").mode == Mode.PENDING_EXISTS


def test_pending_seconds_left_never_negative(activation, store, monkeypatch):
    activation.get_key("H1")
    monkeypatch.setattr(store, "ttl", lambda key: -2)

    out = activation.get_key("H1")

    assert out.mode == Mode.PENDING_EXISTS
    assert out.payload["pendingSecondsLeft"] == 0


def test_grant_without_paste_id_still_redeems(activation, delivery, store):
    def publish_raw_only(title, body):
        delivery.published.append((title, body))
        return Publication(id="", url="https://paste.test/raw/1")

    delivery.publish = publish_raw_only

    assert activation.get_key("H1").payload["getKeyLink"] == "https://short.test/raw/1"
    grant = PendingGrant.decode(store.get("pending:H1"))
    assert grant.paste_id == ""

    assert activation.redeem("H1", delivery.last_key).mode == Mode.ACTIVATED
