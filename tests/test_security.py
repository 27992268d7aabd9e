from datetime import datetime, timedelta, timezone

from chainrise.security import (
    AuthManager,
    bearer_token_matches,
    generate_reference,
    generate_referral_code,
    hash_password,
    verify_password,
)


def test_password_hash_round_trip() -> None:
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password(hashed, "s3cret-pass")
    assert not verify_password(hashed, "wrong")
    assert not verify_password(None, "s3cret-pass")


def test_referral_code_shape() -> None:
    code = generate_referral_code(8, prefix="CHAIN")
    assert code.startswith("CHAIN")
    assert len(code) == 13
    assert code == code.upper()


def test_reference_uses_epoch_millis() -> None:
    prefix, millis, suffix = generate_reference("DEP", datetime(2024, 5, 1, 12, 0)).split("-")
    assert prefix == "DEP"
    assert millis == "1714564800000"
    assert 0 <= int(suffix) < 1000


def test_reference_reads_naive_moments_as_utc() -> None:
    assert generate_reference("DEP", datetime(2024, 1, 1)).startswith("DEP-1704067200000-")
    offset = timezone(timedelta(hours=2))
    aware = datetime(2024, 1, 1, 2, 0, tzinfo=offset)
    assert generate_reference("WDR", aware).startswith("WDR-1704067200000-")


def test_bearer_token_matching() -> None:
    assert bearer_token_matches("Bearer abc", "abc")
    assert not bearer_token_matches("Bearer abd", "abc")
    assert not bearer_token_matches("abc", "abc")
    assert not bearer_token_matches(None, "abc")


def test_auth_manager_locks_after_repeated_failures() -> None:
    manager = AuthManager(max_attempts=3, lockout_minutes=15)
    start = datetime(2024, 1, 1, 9, 0)
    for offset in range(3):
        manager.record_login_attempt("Alice", success=False, at=start + timedelta(minutes=offset))
    assert manager.is_locked("alice", at=start + timedelta(minutes=3))
    assert not manager.is_locked("alice", at=start + timedelta(minutes=30))


def test_successful_login_clears_failures() -> None:
    manager = AuthManager(max_attempts=2)
    now = datetime(2024, 1, 1, 9, 0)
    manager.record_login_attempt("bob", success=False, at=now)
    manager.record_login_attempt("bob", success=True, at=now)
    manager.record_login_attempt("bob", success=False, at=now)
    assert not manager.is_locked("bob", at=now)
