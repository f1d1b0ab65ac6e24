from itsdangerous import URLSafeTimedSerializer

from auth import (
    generate_session_token,
    hash_password,
    read_session_token,
    verify_password,
)


def test_password_hash_round_trip() -> None:
    hashed = hash_password("s3cret-pass")

    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_malformed_hash_does_not_verify() -> None:
    assert not verify_password("anything", "not-a-hash")


def test_session_token_carries_user_id() -> None:
    token = generate_session_token(42)

    assert read_session_token(token) == 42


def test_tampered_or_foreign_tokens_are_rejected() -> None:
    token = generate_session_token(7)
    forged = URLSafeTimedSerializer("other-secret", salt="session-token").dumps(
        {"u": 7}
    )

    assert read_session_token(token[:-2] + "xx") is None
    assert read_session_token(forged) is None
    assert read_session_token("") is None
    assert read_session_token(None) is None
