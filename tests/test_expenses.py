import pytest


def expense_payload(bike_id, **overrides):
    payload = {
        "bikeId": bike_id,
        "title": "Brake pad replacement",
        "description": "Front and rear pads",
        "type": "repair",
        "amount": 300,
        "date": "2024-03-15T10:00:00",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def bike(make_bike):
    return make_bike(purchasePrice=8000)


def stored_bike(admin_client, bike_id):
    return admin_client.get(f"/api/admin/bikes/{bike_id}").get_json()["data"]


def create_expense(admin_client, bike_id, **overrides):
    response = admin_client.post("/api/admin/expenses", json=expense_payload(bike_id, **overrides))
    assert response.status_code == 201, response.get_json()
    return response.get_json()["data"]


def test_applied_expense_raises_purchase_price(admin_client, bike):
    expense = create_expense(admin_client, bike["id"], adjustBikePrice=True)
    current = stored_bike(admin_client, bike["id"])

    assert current["purchasePrice"] == 8300
    assert current["serviceHistory"] == [expense["id"]]
    assert expense["bike"]["id"] == bike["id"]


def test_unapplied_expense_leaves_price(admin_client, bike):
    create_expense(admin_client, bike["id"])

    assert stored_bike(admin_client, bike["id"])["purchasePrice"] == 8000


def test_toggle_is_idempotent(admin_client, bike):
    expense = create_expense(admin_client, bike["id"], adjustBikePrice=True)
    url = f"/api/admin/expenses/{expense['id']}"

    admin_client.put(url, json={"adjustBikePrice": False})
    assert stored_bike(admin_client, bike["id"])["purchasePrice"] == 8000

    admin_client.put(url, json={"adjustBikePrice": True})
    assert stored_bike(admin_client, bike["id"])["purchasePrice"] == 8300

    admin_client.put(url, json={"adjustBikePrice": False})
    assert stored_bike(admin_client, bike["id"])["purchasePrice"] == 8000


def test_amount_change_applies_difference(admin_client, bike):
    expense = create_expense(admin_client, bike["id"], adjustBikePrice=True)

    response = admin_client.put(f"/api/admin/expenses/{expense['id']}", json={"amount": 450})

    assert response.status_code == 200
    assert response.get_json()["data"]["amount"] == 450
    assert stored_bike(admin_client, bike["id"])["purchasePrice"] == 8450


def test_delete_restores_price_and_history(admin_client, bike):
    expense = create_expense(admin_client, bike["id"], adjustBikePrice=True)
    create_expense(admin_client, bike["id"], title="Oil change", amount=50)

    response = admin_client.delete(f"/api/admin/expenses/{expense['id']}")
    current = stored_bike(admin_client, bike["id"])

    assert response.status_code == 200
    assert current["purchasePrice"] == 8000
    assert expense["id"] not in current["serviceHistory"]
    assert len(current["serviceHistory"]) == 1
    assert admin_client.get(f"/api/admin/expenses/{expense['id']}").status_code == 404


def test_moving_expense_between_bikes(admin_client, bike, make_bike):
    other = make_bike(title="Second bike", purchasePrice=5000)
    expense = create_expense(admin_client, bike["id"], adjustBikePrice=True)

    response = admin_client.put(
        f"/api/admin/expenses/{expense['id']}", json={"bikeId": other["id"], "amount": 200}
    )
    original = stored_bike(admin_client, bike["id"])
    moved_to = stored_bike(admin_client, other["id"])

    assert response.status_code == 200
    assert original["purchasePrice"] == 8000
    assert original["serviceHistory"] == []
    assert moved_to["purchasePrice"] == 5200
    assert moved_to["serviceHistory"] == [expense["id"]]


def test_partner_must_hold_share(admin_client, bike, make_partner):
    outsider = make_partner()

    response = admin_client.post(
        "/api/admin/expenses", json=expense_payload(bike["id"], partnerId=outsider["id"])
    )

    assert response.status_code == 400
    assert stored_bike(admin_client, bike["id"])["serviceHistory"] == []


def test_partner_share_expense(admin_client, make_bike, make_partner):
    partner = make_partner()
    shared = make_bike(partners=[{"partnerId": partner["id"], "percentage": 40}])

    expense = create_expense(
        admin_client, shared["id"], partnerId=partner["id"], adjustPartnerShares=True
    )

    assert expense["partner"]["name"] == partner["name"]
    assert expense["adjustPartnerShares"] is True


def test_expense_for_missing_bike_or_partner(admin_client, bike):
    missing = "65f0c0ffee0000000000abcd"

    no_bike = admin_client.post("/api/admin/expenses", json=expense_payload(missing))
    no_partner = admin_client.post(
        "/api/admin/expenses", json=expense_payload(bike["id"], partnerId=missing)
    )

    assert no_bike.status_code == 404
    assert no_partner.status_code == 404


def test_expense_amount_must_be_positive(admin_client, bike):
    response = admin_client.post("/api/admin/expenses", json=expense_payload(bike["id"], amount=0))

    assert response.status_code == 400


def test_list_expenses_filters(admin_client, bike, make_bike):
    other = make_bike(title="Second bike")
    create_expense(admin_client, bike["id"], title="Engine tune", type="maintenance")
    create_expense(admin_client, other["id"], title="Registration renewal", type="registration")

    by_bike = admin_client.get(f"/api/admin/expenses?bikeId={bike['id']}").get_json()
    by_type = admin_client.get("/api/admin/expenses?type=registration").get_json()["data"]
    by_search = admin_client.get("/api/admin/expenses?search=engine").get_json()["data"]

    assert by_bike["meta"]["total"] == 1
    assert [expense["title"] for expense in by_type] == ["Registration renewal"]
    assert [expense["title"] for expense in by_search] == ["Engine tune"]
