import asyncio

from conftest import API, PASSWORD


def test_supplier_is_forbidden_from_admin_routes(client, register):
    _, headers = register("vendor@carebook.test", "supplier")
    r = client.get(f"{API}/admin/users", headers=headers)
    assert r.status_code == 403
    assert r.json() == {
        "success": False,
        "error": {"code": "FORBIDDEN", "message": "Access denied. Required role(s): admin"},
    }


def test_admin_reaches_admin_routes(client, register):
    admin, headers = register("root@carebook.test", "admin")
    r = client.get(f"{API}/admin/users", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert [u["email"] for u in body["data"]] == [admin["email"]]
    assert body["meta"]["pagination"]["total"] == 1


def test_role_gated_route_without_session_is_401(client):
    for method, path in [
        ("get", f"{API}/admin/dashboard"),
        ("get", f"{API}/supplier/properties"),
        ("post", f"{API}/bookings"),
        ("get", f"{API}/auth/me"),
    ]:
        r = getattr(client, method)(path)
        assert r.status_code == 401, path
        assert r.json() == {
            "success": False,
            "error": {"code": "UNAUTHORIZED", "message": "Authentication required"},
        }


def test_cached_quote_expires(cache, fake_redis):
    asyncio.run(cache.set("quote:Q-1", {"total": "4200.00"}, 60))
    fake_redis.advance(60)
    assert asyncio.run(cache.get("quote:Q-1")) is None


def test_sign_in_sets_session_cookie(client, register):
    register("cookie@carebook.test")
    r = client.post(f"{API}/auth/sign-in", json={"email": "cookie@carebook.test", "password": PASSWORD})
    assert r.status_code == 200
    assert "carebook.session_token" in r.cookies
    # the cookie alone authenticates
    me = client.get(f"{API}/auth/me")
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == "cookie@carebook.test"


def test_bad_credentials(client, register):
    register("someone@carebook.test")
    r = client.post(f"{API}/auth/sign-in", json={"email": "someone@carebook.test", "password": "nope-nope"})
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Invalid email or password"
    r = client.post(f"{API}/auth/sign-in", json={"email": "ghost@carebook.test", "password": PASSWORD})
    assert r.status_code == 401


def test_duplicate_email_is_conflict(client, register):
    register("twice@carebook.test")
    r = client.post(
        f"{API}/auth/sign-up",
        json={"name": "Again", "email": "TWICE@carebook.test", "password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "CONFLICT"


def test_admin_self_signup_can_be_disabled(client):
    client.app.state.settings = client.app.state.settings.model_copy(
        update={"allow_admin_signup": False}
    )
    r = client.post(
        f"{API}/auth/sign-up",
        json={"name": "Mallory", "email": "mallory@carebook.test", "password": PASSWORD, "role": "admin"},
    )
    assert r.status_code == 403


def test_sign_up_validation(client):
    r = client.post(f"{API}/auth/sign-up", json={"name": "X", "email": "nope", "password": "short"})
    assert r.status_code == 422
    body = r.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["message"] == "Invalid request"


def test_sign_out_revokes_session(client, register):
    _, headers = register("leaving@carebook.test")
    assert client.get(f"{API}/auth/me", headers=headers).status_code == 200
    assert client.post(f"{API}/auth/sign-out", headers=headers).status_code == 200
    assert client.get(f"{API}/auth/me", headers=headers).status_code == 401


def test_profile_is_cached_per_user(client, register, fake_redis):
    user, headers = register("cached@carebook.test")
    client.get(f"{API}/auth/me", headers=headers)
    assert f"session:{user['id']}" in fake_redis.store


def test_role_change_takes_effect_immediately(client, register):
    _, admin_h = register("boss@carebook.test", "admin")
    user, headers = register("promoted@carebook.test", "customer")
    assert client.get(f"{API}/supplier/properties", headers=headers).status_code == 403

    r = client.post(f"{API}/admin/users/{user['id']}/role", json={"role": "supplier"}, headers=admin_h)
    assert r.status_code == 200
    assert r.json()["data"]["user"]["role"] == "supplier"
    # no supplier profile yet, but the role gate lets the request through
    r = client.get(f"{API}/supplier/properties", headers=headers)
    assert r.status_code == 404


def test_user_search(client, register):
    _, admin_h = register("boss@carebook.test", "admin")
    register("ann@family.test")
    register("bob@family.test")
    r = client.get(f"{API}/admin/users", params={"search": "family", "limit": 1}, headers=admin_h)
    body = r.json()
    assert len(body["data"]) == 1
    assert body["meta"]["pagination"] == {
        "page": 1,
        "limit": 1,
        "total": 2,
        "totalPages": 2,
        "hasNext": True,
        "hasPrev": False,
    }


def test_health_and_root(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["services"] == {"redis": "healthy", "database": "healthy"}
    assert client.get("/").json()["version"] == "v1"


def test_unknown_route_uses_error_envelope(client):
    r = client.get(f"{API}/nowhere")
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": {"code": "NOT_FOUND", "message": "Not Found"}}
