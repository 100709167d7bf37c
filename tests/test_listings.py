from conftest import API


def test_search_returns_only_live_homes(client, marketplace):
    client.post(
        f"{API}/nursing-homes",
        json={"name": "Draft House", "address": "1 Soi 2", "city": "Chiang Mai", "province": "Chiang Mai"},
        headers=marketplace.supplier_h,
    )
    r = client.get(f"{API}/nursing-homes", params={"city": "chiang mai"})
    assert r.status_code == 200
    names = [h["name"] for h in r.json()["data"]]
    assert names == ["Sunrise Garden"]


def test_search_is_cached(client, marketplace, fake_redis):
    client.get(f"{API}/nursing-homes", params={"city": "Chiang Mai", "page": 1, "limit": 10})
    assert "search:nursing_homes:chiang mai::1:10" in fake_redis.store


def test_home_detail_nests_rooms_and_plans(client, marketplace):
    r = client.get(f"{API}/nursing-homes/{marketplace.home['id']}")
    assert r.status_code == 200
    detail = r.json()["data"]
    assert detail["room_types"][0]["name"] == "Private suite"
    assert detail["room_types"][0]["rate_plans"][0]["id"] == marketplace.plan["id"]


def test_draft_home_is_hidden_from_public(client, marketplace):
    home = client.post(
        f"{API}/nursing-homes",
        json={"name": "Hidden", "address": "9 Rd", "city": "Bangkok", "province": "Bangkok"},
        headers=marketplace.supplier_h,
    ).json()["data"]
    assert home["status"] == "draft"
    assert client.get(f"{API}/nursing-homes/{home['id']}").status_code == 404
    # the owner still sees it
    r = client.get(f"{API}/supplier/properties/{home['id']}", headers=marketplace.supplier_h)
    assert r.status_code == 200


def test_supplier_profile_is_unique_and_pending(client, register):
    _, headers = register("second@vendor.test", "supplier")
    r = client.post(f"{API}/suppliers", json={"legal_name": "Second Co"}, headers=headers)
    assert r.status_code == 201
    assert r.json()["data"]["qc_status"] == "pending"
    r = client.post(f"{API}/suppliers", json={"legal_name": "Second Co"}, headers=headers)
    assert r.status_code == 409
    assert client.get(f"{API}/suppliers/me", headers=headers).json()["data"]["legal_name"] == "Second Co"


def test_customer_cannot_create_supplier_or_homes(client, marketplace):
    r = client.post(f"{API}/suppliers", json={"legal_name": "Nope"}, headers=marketplace.customer_h)
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Access denied. Required role(s): supplier"
    r = client.post(
        f"{API}/nursing-homes",
        json={"name": "Nope", "address": "x x", "city": "Bangkok", "province": "Bangkok"},
        headers=marketplace.customer_h,
    )
    assert r.json()["error"]["message"] == "Access denied. Required role(s): supplier, admin"


def test_unapproved_supplier_cannot_go_live(client, register):
    _, headers = register("fresh@vendor.test", "supplier")
    client.post(f"{API}/suppliers", json={"legal_name": "Fresh Co"}, headers=headers)
    home = client.post(
        f"{API}/nursing-homes",
        json={"name": "Fresh Home", "address": "5 Rd", "city": "Phuket", "province": "Phuket"},
        headers=headers,
    ).json()["data"]
    r = client.patch(f"{API}/nursing-homes/{home['id']}/status", json={"status": "live"}, headers=headers)
    assert r.status_code == 409


def test_rejecting_supplier_pauses_live_homes(client, marketplace):
    r = client.patch(
        f"{API}/admin/suppliers/{marketplace.supplier['id']}/qc",
        json={"qc_status": "rejected"},
        headers=marketplace.admin_h,
    )
    assert r.status_code == 200
    r = client.get(f"{API}/supplier/properties", headers=marketplace.supplier_h)
    assert [h["status"] for h in r.json()["data"]] == ["paused"]


def test_other_supplier_cannot_touch_listing(client, marketplace, register):
    _, rival_h = register("rival@vendor.test", "supplier")
    client.post(f"{API}/suppliers", json={"legal_name": "Rival Co"}, headers=rival_h)
    r = client.post(
        f"{API}/nursing-homes/{marketplace.home['id']}/room-types",
        json={"name": "Sneaky", "capacity": 1},
        headers=rival_h,
    )
    assert r.status_code == 403
    assert r.json()["error"]["message"] == "Access denied. You do not own this resource."
    r = client.get(f"{API}/supplier/properties/{marketplace.home['id']}", headers=rival_h)
    assert r.status_code == 403


def test_admin_creates_home_for_supplier(client, marketplace):
    r = client.post(
        f"{API}/nursing-homes",
        json={"name": "Admin Listed", "address": "7 Rd", "city": "Bangkok", "province": "Bangkok"},
        headers=marketplace.admin_h,
    )
    assert r.status_code == 422
    r = client.post(
        f"{API}/nursing-homes",
        json={
            "name": "Admin Listed",
            "address": "7 Rd",
            "city": "Bangkok",
            "province": "Bangkok",
            "supplier_id": marketplace.supplier["id"],
        },
        headers=marketplace.admin_h,
    )
    assert r.status_code == 201
    assert r.json()["data"]["supplier_id"] == marketplace.supplier["id"]


def test_room_capacity_must_be_positive(client, marketplace):
    r = client.post(
        f"{API}/nursing-homes/{marketplace.home['id']}/room-types",
        json={"name": "Closet", "capacity": 0},
        headers=marketplace.supplier_h,
    )
    assert r.status_code == 422


def test_calendar_read_and_range(client, marketplace):
    r = client.get(
        f"{API}/rate-plans/{marketplace.plan['id']}/calendar",
        params={"start": "2030-01-02", "end": "2030-01-04"},
    )
    days = r.json()["data"]
    assert [d["day"] for d in days] == ["2030-01-02", "2030-01-03"]
    assert days[1]["price"] == "1500.00"


def test_calendar_rejects_existing_days_in_strict_mode(client, marketplace):
    r = client.put(
        f"{API}/rate-plans/{marketplace.plan['id']}/calendar",
        json={"days": [{"day": "2030-01-01", "price": "999.00", "available": 3}]},
        headers=marketplace.supplier_h,
    )
    assert r.status_code == 409
    assert "2030-01-01" in r.json()["error"]["message"]


def test_calendar_overwrites_when_not_strict(client, marketplace):
    client.app.state.settings = client.app.state.settings.model_copy(
        update={"strict_calendar_uniqueness": False}
    )
    r = client.put(
        f"{API}/rate-plans/{marketplace.plan['id']}/calendar",
        json={"days": [{"day": "2030-01-01", "price": "999.00", "available": 3}]},
        headers=marketplace.supplier_h,
    )
    assert r.status_code == 200
    row = r.json()["data"][0]
    assert (row["price"], row["available"]) == ("999.00", 3)


def test_calendar_rejects_duplicate_days_in_one_request(client, marketplace):
    r = client.put(
        f"{API}/rate-plans/{marketplace.plan['id']}/calendar",
        json={
            "days": [
                {"day": "2030-02-01", "price": "10.00", "available": 1},
                {"day": "2030-02-01", "price": "11.00", "available": 1},
            ]
        },
        headers=marketplace.supplier_h,
    )
    assert r.status_code == 422


def test_missing_home_is_404(client):
    r = client.get(f"{API}/nursing-homes/does-not-exist")
    assert r.status_code == 404
    assert r.json()["error"] == {"code": "NOT_FOUND", "message": "Nursing home not found"}
