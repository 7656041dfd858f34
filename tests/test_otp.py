import pytest
from sqlalchemy import select

from auth_service import otp
from auth_service.db import SessionLocal
from auth_service.models import AuthUser, OtpCode, SecurityAuditLog
from shared.security import create_access_token, create_challenge_token

EMAIL = "devotee@example.com"
PASSWORD = "s3cure-passw0rd"


@pytest.fixture(autouse=True)
def no_delay(monkeypatch):
    async def instant():
        return None

    monkeypatch.setattr(otp, "enumeration_delay", instant)


@pytest.fixture
async def registered(auth_client):
    r = await auth_client.post("/register", json={"email": EMAIL, "password": PASSWORD, "roles": ["user"]})
    assert r.status_code == 201, r.text
    return EMAIL


async def latest_code(email: str, purpose: str) -> OtpCode:
    async with SessionLocal() as s:
        res = await s.execute(
            select(OtpCode)
            .where(OtpCode.email == email, OtpCode.purpose == purpose)
            .order_by(OtpCode.id.desc())
            .limit(1)
        )
        return res.scalar_one()


def test_generated_codes_are_six_digits():
    for _ in range(50):
        code = otp.generate_code()
        assert len(code) == 6 and code.isdigit()


def test_email_shape():
    assert otp.valid_email("a@b.co")
    assert not otp.valid_email("no-at-sign.com")
    assert not otp.valid_email("a@b")
    assert not otp.valid_email("x" * 250 + "@b.com")


async def test_unknown_and_known_email_get_same_body(auth_client, registered):
    unknown = await auth_client.post("/otp/send", json={"email": "nobody@example.com", "purpose": "login"})
    known = await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})

    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json() == {"success": True, "message": "If this email exists, an OTP has been sent"}


async def test_unknown_email_stores_nothing(auth_client):
    await auth_client.post("/otp/send", json={"email": "nobody@example.com", "purpose": "login"})

    async with SessionLocal() as s:
        res = await s.execute(select(OtpCode))
        assert res.scalars().all() == []


async def test_invalid_email_rejected(auth_client):
    r = await auth_client.post("/otp/send", json={"email": "not-an-email", "purpose": "login"})
    assert r.status_code == 400

    r = await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "reset_password"})
    assert r.status_code == 422


async def test_send_is_rate_limited_per_hour(auth_client, registered):
    for _ in range(otp.MAX_SENDS_PER_HOUR):
        r = await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
        assert r.status_code == 200

    r = await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "3600"


async def test_new_code_invalidates_previous(auth_client, registered):
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "enable_2fa"})
    first = await latest_code(EMAIL, "enable_2fa")
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "enable_2fa"})

    async with SessionLocal() as s:
        refreshed = await s.get(OtpCode, first.id)
        assert refreshed.used is True


async def enable_two_factor(auth_client, email: str = EMAIL):
    await auth_client.post("/otp/send", json={"email": email, "purpose": "enable_2fa"})
    record = await latest_code(email, "enable_2fa")
    r = await auth_client.post("/otp/verify", json={"email": email, "code": record.code, "purpose": "enable_2fa"})
    assert r.status_code == 200, r.text


async def test_verify_enables_two_factor_and_gates_login(auth_client, registered):
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "enable_2fa"})
    record = await latest_code(EMAIL, "enable_2fa")

    r = await auth_client.post("/otp/verify", json={"email": EMAIL, "code": record.code, "purpose": "enable_2fa"})
    assert r.status_code == 200, r.text
    assert r.json()["message"] == "Two-factor authentication enabled"

    async with SessionLocal() as s:
        res = await s.execute(select(AuthUser).where(AuthUser.email == EMAIL))
        assert res.scalar_one().two_factor_enabled is True

    r = await auth_client.post("/login", json={"email": EMAIL, "password": PASSWORD})
    assert r.json()["two_factor_required"] is True
    assert "access_token" not in r.json()
    challenge = r.json()["challenge_token"]

    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
    record = await latest_code(EMAIL, "login")
    r = await auth_client.post(
        "/otp/verify",
        json={"email": EMAIL, "code": record.code, "purpose": "login", "challenge_token": challenge},
    )
    assert r.status_code == 200, r.text
    assert r.json()["access_token"]


async def test_login_code_needs_password_challenge(auth_client, registered):
    await enable_two_factor(auth_client)
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
    record = await latest_code(EMAIL, "login")

    r = await auth_client.post("/otp/verify", json={"email": EMAIL, "code": record.code, "purpose": "login"})
    assert r.status_code == 401
    assert "access_token" not in r.json()

    # an access token is not a challenge token
    r = await auth_client.post(
        "/otp/verify",
        json={
            "email": EMAIL,
            "code": record.code,
            "purpose": "login",
            "challenge_token": create_access_token(EMAIL, ["user"]),
        },
    )
    assert r.status_code == 401


async def test_login_challenge_is_bound_to_its_account(auth_client, registered):
    other = "other-devotee@example.com"
    r = await auth_client.post("/register", json={"email": other, "password": PASSWORD})
    assert r.status_code == 201
    await enable_two_factor(auth_client)
    await enable_two_factor(auth_client, other)

    r = await auth_client.post("/login", json={"email": other, "password": PASSWORD})
    challenge_for_other = r.json()["challenge_token"]

    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
    record = await latest_code(EMAIL, "login")
    r = await auth_client.post(
        "/otp/verify",
        json={"email": EMAIL, "code": record.code, "purpose": "login", "challenge_token": challenge_for_other},
    )
    assert r.status_code == 401
    assert r.json()["detail"] == "Challenge token does not match this account"


async def test_login_code_refused_when_two_factor_is_off(auth_client, registered):
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
    record = await latest_code(EMAIL, "login")

    r = await auth_client.post(
        "/otp/verify",
        json={"email": EMAIL, "code": record.code, "purpose": "login", "challenge_token": create_challenge_token(EMAIL)},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Two-factor authentication is not enabled for this account"
    assert "access_token" not in r.json()


async def test_challenge_token_is_not_a_session(auth_client, registered):
    headers = {"Authorization": f"Bearer {create_challenge_token(EMAIL)}"}
    r = await auth_client.post("/audit-log", json={"action": "login", "resource_type": "session"}, headers=headers)
    assert r.status_code == 401
    assert r.json()["detail"] == "Two-factor verification pending"


async def test_two_factor_toggles_are_audited(auth_client, registered):
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "enable_2fa"})
    record = await latest_code(EMAIL, "enable_2fa")
    r = await auth_client.post(
        "/otp/verify",
        json={"email": EMAIL, "code": record.code, "purpose": "enable_2fa"},
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "subhakary-web/1.0"},
    )
    assert r.status_code == 200

    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "disable_2fa"})
    record = await latest_code(EMAIL, "disable_2fa")
    r = await auth_client.post("/otp/verify", json={"email": EMAIL, "code": record.code, "purpose": "disable_2fa"})
    assert r.status_code == 200

    async with SessionLocal() as s:
        res = await s.execute(select(SecurityAuditLog).order_by(SecurityAuditLog.id))
        rows = res.scalars().all()

    assert [row.action for row in rows] == ["two_factor_enabled", "two_factor_disabled"]
    assert rows[0].user_id == EMAIL
    assert rows[0].resource_type == "auth_user"
    assert rows[0].ip_address == "203.0.113.7"
    assert rows[0].user_agent == "subhakary-web/1.0"


async def test_wrong_code_consumes_it(auth_client, registered):
    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "enable_2fa"})
    record = await latest_code(EMAIL, "enable_2fa")
    wrong = "000000" if record.code != "000000" else "111111"

    r = await auth_client.post("/otp/verify", json={"email": EMAIL, "code": wrong, "purpose": "enable_2fa"})
    assert r.status_code == 400

    r = await auth_client.post("/otp/verify", json={"email": EMAIL, "code": record.code, "purpose": "enable_2fa"})
    assert r.status_code == 400


async def test_malformed_code_rejected(auth_client, registered):
    for code in ("12ab56", "١٢٣٤٥٦", "123456\n", "1234567"):
        r = await auth_client.post("/otp/verify", json={"email": EMAIL, "code": code, "purpose": "enable_2fa"})
        assert r.status_code == 400, code
        assert r.json()["detail"] == "Invalid verification code format"


def test_code_shape_is_ascii_digits_only():
    assert otp.valid_code("123456")
    assert not otp.valid_code("١٢٣٤٥٦")
    assert not otp.valid_code("１２３４５６")


async def test_only_unknown_email_waits(auth_client, registered, monkeypatch):
    waited = []

    async def recording_delay():
        waited.append(True)

    monkeypatch.setattr(otp, "enumeration_delay", recording_delay)

    await auth_client.post("/otp/send", json={"email": EMAIL, "purpose": "login"})
    assert waited == []

    await auth_client.post("/otp/send", json={"email": "nobody@example.com", "purpose": "login"})
    assert waited == [True]


async def test_enumeration_delay_is_within_jitter_window(monkeypatch):
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr(otp.asyncio, "sleep", fake_sleep)
    for _ in range(20):
        await otp.enumeration_delay()

    assert len(slept) == 20
    assert all(0.15 <= s <= 0.25 for s in slept)


async def test_login_without_two_factor_returns_token(auth_client, registered):
    r = await auth_client.post("/login", json={"email": EMAIL, "password": PASSWORD})
    assert r.status_code == 200
    assert r.json()["access_token"]

    r = await auth_client.post("/login", json={"email": EMAIL, "password": "wrong-password"})
    assert r.status_code == 401


async def test_register_rejects_unknown_role(auth_client):
    r = await auth_client.post("/register", json={"email": "x@example.com", "password": PASSWORD, "roles": ["handyman"]})
    assert r.status_code == 422
