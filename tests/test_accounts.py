from datetime import datetime, timedelta, timezone

from sqlmodel import select

from carebook.db import get_session, init_db, make_engine
from carebook.models import Account, UserSession
from carebook.repositories import users_repo
from conftest import API, PASSWORD

NEW_PASSWORD = "battery-staple-42"


def _sign_in(client, email, password=PASSWORD):
    r = client.post(f"{API}/auth/sign-in", json={"email": email, "password": password})
    client.cookies.clear()
    return r


def _bearer(r):
    return {"Authorization": f"Bearer {r.json()['data']['token']}"}


def test_session_timestamps_are_utc_aware(settings):
    engine = make_engine(settings)
    init_db(engine)
    with get_session(engine) as s:
        users_repo.register_user(s, settings, "Nok", "nok@family.test", PASSWORD)
        _, session = users_repo.login(s, settings, "nok@family.test", PASSWORD)
        session_id = session.id

    with get_session(engine) as s:
        stored = s.get(UserSession, session_id)
    assert stored.expires_at.utcoffset() == timedelta(0)
    assert stored.created_at.utcoffset() == timedelta(0)
    assert stored.expires_at > datetime.now(timezone.utc)


def test_profile_read_and_update(client, register, fake_redis):
    user, headers = register("mali@family.test")
    r = client.get(f"{API}/auth/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email"] == "mali@family.test"

    client.get(f"{API}/auth/me", headers=headers)
    assert f"session:{user['id']}" in fake_redis.store

    r = client.put(
        f"{API}/auth/profile",
        json={"name": "Mali Srisuk", "email": "Mali.S@family.test"},
        headers=headers,
    )
    assert r.status_code == 200
    updated = r.json()["data"]["user"]
    assert (updated["name"], updated["email"]) == ("Mali Srisuk", "mali.s@family.test")
    assert updated["emailVerified"] is False

    me = client.get(f"{API}/auth/me", headers=headers).json()["data"]["user"]
    assert me["name"] == "Mali Srisuk"


def test_profile_email_must_be_free(client, register):
    register("taken@family.test")
    _, headers = register("mover@family.test")
    r = client.put(f"{API}/auth/profile", json={"email": "taken@family.test"}, headers=headers)
    assert r.status_code == 409


def test_change_password_revokes_other_sessions(client, register):
    _, headers = register("pim@family.test")
    other = _bearer(_sign_in(client, "pim@family.test"))

    r = client.post(
        f"{API}/auth/change-password",
        json={"current_password": "wrong-password", "new_password": NEW_PASSWORD},
        headers=headers,
    )
    assert r.status_code == 422
    assert client.get(f"{API}/auth/me", headers=other).status_code == 200

    r = client.post(
        f"{API}/auth/change-password",
        json={"current_password": PASSWORD, "new_password": NEW_PASSWORD},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["data"]["revokedSessions"] == 1

    assert client.get(f"{API}/auth/me", headers=headers).status_code == 200
    assert client.get(f"{API}/auth/me", headers=other).status_code == 401
    assert _sign_in(client, "pim@family.test").status_code == 401
    assert _sign_in(client, "pim@family.test", NEW_PASSWORD).status_code == 200


def test_corrupt_password_hash_is_bad_credentials(client, register):
    user, _ = register("broken@family.test")
    with get_session(client.app.state.engine) as s:
        account = s.exec(select(Account).where(Account.user_id == user["id"])).one()
        account.password = "pbkdf2:sha256:many$c2FsdA$deadbeef"
        s.add(account)
        s.commit()

    r = _sign_in(client, "broken@family.test")
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Invalid email or password"


def test_admin_reads_user_by_id(client, register):
    _, admin_h = register("boss@carebook.test", "admin")
    user, headers = register("ploy@family.test")

    r = client.get(f"{API}/admin/users/{user['id']}", headers=admin_h)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["email"] == "ploy@family.test"
    assert client.get(f"{API}/admin/users/nobody", headers=admin_h).status_code == 404
    assert client.get(f"{API}/admin/users/{user['id']}", headers=headers).status_code == 403


def test_user_list_rejects_bad_paging(client, register):
    _, admin_h = register("boss@carebook.test", "admin")
    r = client.get(f"{API}/admin/users", params={"page": 0}, headers=admin_h)
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


def test_importing_the_server_builds_no_app():
    from carebook.api import server

    assert not hasattr(server, "app")
