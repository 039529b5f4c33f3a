"""
Session store: additive grants, token issuance, rate lookups and the
atomic countdown.
"""
from datetime import timedelta

import pytest

from conftest import IP_A1, MAC_A1, MAC_B2
from hotspot.exceptions import ValidationError
from hotspot.models.rate import Rate
from hotspot.services.session_store import SessionStore, combine_session_types
from hotspot.utils.helpers import utcnow


@pytest.fixture
def store(db):
    db.add_all([
        Rate(pesos=5, minutes=120, download_limit=10, upload_limit=10),
        Rate(pesos=10, minutes=300, download_limit=20, upload_limit=15),
        Rate(pesos=1, minutes=10, download_limit=5, upload_limit=5),
    ])
    db.commit()
    return SessionStore(db)


def test_repeat_grant_is_additive_on_one_row(store, db):
    store.upsert_grant(MAC_A1, IP_A1, 7200, 5)
    store.commit()
    row = store.get(MAC_A1)
    assert (row.remaining_seconds, row.total_paid) == (7200, 5)
    first_token = row.token

    store.upsert_grant(MAC_A1, IP_A1, 7200, 5)
    store.commit()

    row = store.get(MAC_A1)
    assert (row.remaining_seconds, row.total_paid) == (14400, 10)
    assert row.token == first_token
    assert len(store.list_all()) == 1


def test_grant_issues_fixed_length_token_with_ttl(store):
    row = store.upsert_grant(MAC_A1, IP_A1, 600, 1)
    store.commit()

    assert len(row.token) == 32
    ttl = row.token_expires_at - utcnow()
    assert timedelta(days=2, hours=23) < ttl <= timedelta(days=3)


def test_live_token_keeps_its_window_and_expired_token_is_replaced(store):
    row = store.upsert_grant(MAC_A1, IP_A1, 600, 1)
    original_token, original_expiry = row.token, row.token_expires_at

    row.token_expires_at = original_expiry - timedelta(days=1)
    store.upsert_grant(MAC_A1, IP_A1, 600, 1)
    assert row.token == original_token
    assert row.token_expires_at == original_expiry - timedelta(days=1)

    row.token_expires_at = utcnow() - timedelta(seconds=1)
    store.upsert_grant(MAC_A1, IP_A1, 600, 1)
    assert row.token != original_token
    assert row.token_expires_at > utcnow()


def test_grant_replaces_limits_and_combines_types(store):
    store.upsert_grant(MAC_A1, IP_A1, 600, 5, download_limit=10, upload_limit=10)
    row = store.upsert_grant(MAC_A1, IP_A1, 600, 0, download_limit=2, upload_limit=1,
                             session_type="voucher", voucher_code="ABC123")

    assert (row.download_limit, row.upload_limit) == (2, 1)
    assert row.session_type == "mixed"
    assert row.voucher_code == "ABC123"

    kept = store.upsert_grant(MAC_A1, IP_A1, 60, 1)
    assert (kept.download_limit, kept.upload_limit) == (2, 1)


def test_combine_session_types():
    assert combine_session_types(None, "coin") == "coin"
    assert combine_session_types("coin", "coin") == "coin"
    assert combine_session_types("voucher", "voucher") == "voucher"
    assert combine_session_types("coin", "voucher") == "mixed"
    assert combine_session_types("voucher", "coin") == "mixed"
    assert combine_session_types("mixed", "coin") == "mixed"


@pytest.mark.parametrize("seconds, paid", [(0, 5), (-10, 5), (60, -1)])
def test_invalid_grants_are_rejected_without_a_row(store, seconds, paid):
    with pytest.raises(ValidationError):
        store.upsert_grant(MAC_A1, IP_A1, seconds, paid)
    assert store.get(MAC_A1) is None


def test_unknown_session_type_is_rejected(store):
    with pytest.raises(ValidationError):
        store.upsert_grant(MAC_A1, IP_A1, 60, 5, session_type="gift")
    assert store.get(MAC_A1) is None


def test_lookup_limits_exact_then_pesos_then_unlimited(store):
    assert store.lookup_limits(5, 120) == (10, 10)
    assert store.lookup_limits(10, 999) == (20, 15)
    assert store.lookup_limits(7, 60) == (0, 0)


def test_derive_minutes_from_coin_amount(store):
    assert store.derive_minutes(5) == 120
    # 15 = 10 + 5
    assert store.derive_minutes(15) == 420
    # 7 = 5 + 1 + 1
    assert store.derive_minutes(7) == 140
    assert store.derive_minutes(0) == 0


def test_derive_minutes_without_rates_uses_fallback(db):
    assert SessionStore(db).derive_minutes(3) == 30


def test_update_address_reports_previous_only_on_change(store):
    store.upsert_grant(MAC_A1, IP_A1, 600, 1)

    assert store.update_address(MAC_A1, IP_A1) is None
    assert store.update_address(MAC_A1, "10.0.0.99") == IP_A1
    assert store.get(MAC_A1).network_address == "10.0.0.99"
    assert store.update_address(MAC_B2, "10.0.0.5") is None


def test_decrement_skips_paused_rows_and_reports_zeroed(store):
    store.upsert_grant(MAC_A1, IP_A1, 2, 1)
    store.upsert_grant(MAC_B2, "10.0.0.42", 10, 1)
    store.set_paused(MAC_B2, True)
    store.commit()

    assert store.decrement_all_active(1) == []
    assert store.get(MAC_A1).remaining_seconds == 1
    assert store.get(MAC_B2).remaining_seconds == 10

    assert store.decrement_all_active(5) == [MAC_A1]
    assert store.get(MAC_A1).remaining_seconds == 0
    assert store.get(MAC_B2).remaining_seconds == 10


def test_list_active_excludes_paused(store):
    store.upsert_grant(MAC_A1, IP_A1, 60, 1)
    store.upsert_grant(MAC_B2, "10.0.0.42", 60, 1)
    store.set_paused(MAC_B2, True)
    store.commit()

    assert [row.hardware_id for row in store.list_active()] == [MAC_A1]


def test_delete(store):
    store.upsert_grant(MAC_A1, IP_A1, 60, 1)
    store.commit()

    assert store.delete(MAC_A1) is True
    store.commit()
    assert store.get(MAC_A1) is None
    assert store.delete(MAC_A1) is False
