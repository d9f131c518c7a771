from datetime import timedelta

from starlette.requests import Request

from shared.security import create_access_token, user_id_or_ip, verify_access_token, verify_api_key


def _request(headers=None):
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "headers": raw, "client": ("10.0.0.7", 5123)})


def test_admin_claims_round_trip():
    claims = verify_access_token(create_access_token("7", role="admin", username="meera"))
    assert claims["sub"] == "7"
    assert claims["role"] == "admin"
    assert claims["username"] == "meera"


def test_expired_token_is_rejected():
    token = create_access_token("7", expires_delta=timedelta(seconds=-5))
    assert verify_access_token(token) is None


def test_tampered_token_is_rejected():
    assert verify_access_token(create_access_token("7") + "x") is None


def test_rate_limit_key_prefers_user():
    token = create_access_token("user-42")
    assert user_id_or_ip(_request({"Authorization": f"Bearer {token}"})) == "user:user-42"
    assert user_id_or_ip(_request()) == "ip:10.0.0.7"


def test_internal_api_key():
    assert verify_api_key("test-internal-key")
    assert not verify_api_key("nope")
    assert not verify_api_key("")
