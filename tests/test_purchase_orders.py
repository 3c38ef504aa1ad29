import pytest


def order_payload(bike_id, **overrides):
    payload = {
        "bikeId": bike_id,
        "buyerName": "Sadia Rahman",
        "buyerPhone": "01811111111",
        "buyerEmail": "sadia@example.com",
        "buyerDocs": {"nid": "NID-9", "drivingLicense": "DL-9"},
        "amount": 5000,
        "profit": 1000,
        "paymentMethod": "Bkash",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def bike(make_bike):
    return make_bike()


@pytest.fixture
def partner(make_partner):
    return make_partner()


@pytest.fixture
def create_order(admin_client, bike):
    def create(**overrides):
        response = admin_client.post(
            "/api/admin/purchase-orders", json=order_payload(bike["id"], **overrides)
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["data"]

    return create


def test_create_order_reports_net_profit(create_order, partner, bike):
    order = create_order(partnersProfit=[{"partnerId": partner["id"], "profit": 300}])

    assert order["totalPartnerProfit"] == 300
    assert order["netProfit"] == 700
    assert order["status"] == "pending"
    assert order["paymentStatus"] == "pending"
    assert order["bike"]["id"] == bike["id"]
    assert order["partnersProfit"][0]["partnerId"] == partner["id"]


def test_net_profit_is_recomputed_on_every_read(admin_client, create_order, partner):
    order = create_order(partnersProfit=[{"partnerId": partner["id"], "profit": 300}])

    admin_client.put(
        f"/api/admin/purchase-orders/{order['id']}",
        json={"partnersProfit": [{"partnerId": partner["id"], "profit": 450}]},
    )
    fetched = admin_client.get(f"/api/admin/purchase-orders/{order['id']}").get_json()["data"]
    listed = admin_client.get("/api/admin/purchase-orders").get_json()["data"]

    assert fetched["netProfit"] == 550
    assert listed[0]["netProfit"] == 550
    assert listed[0]["totalPartnerProfit"] == 450


def test_create_order_for_missing_bike(admin_client):
    response = admin_client.post(
        "/api/admin/purchase-orders", json=order_payload("65f0c0ffee0000000000abcd")
    )

    assert response.status_code == 404
    assert response.get_json()["message"] == "Bike not found"


def test_create_order_with_missing_partner(admin_client, bike):
    missing_id = "65f0c0ffee0000000000abcd"
    response = admin_client.post(
        "/api/admin/purchase-orders",
        json=order_payload(bike["id"], partnersProfit=[{"partnerId": missing_id, "profit": 10}]),
    )

    assert response.status_code == 404
    assert missing_id in response.get_json()["message"]


def test_create_order_rejects_unknown_payment_method(admin_client, bike):
    response = admin_client.post(
        "/api/admin/purchase-orders", json=order_payload(bike["id"], paymentMethod="Crypto")
    )

    assert response.status_code == 400


def test_status_and_payment_updates(admin_client, create_order):
    order = create_order()

    status = admin_client.put(
        f"/api/admin/purchase-orders/{order['id']}",
        json={"updateType": "status", "status": "confirmed", "amount": 1},
    )
    payment = admin_client.put(
        f"/api/admin/purchase-orders/{order['id']}",
        json={"updateType": "payment", "paymentStatus": "partial", "dueAmount": 1200},
    )
    data = payment.get_json()["data"]

    assert status.status_code == 200
    assert status.get_json()["data"]["amount"] == 5000
    assert data["status"] == "confirmed"
    assert data["paymentStatus"] == "partial"
    assert data["dueAmount"] == 1200


def test_full_update_revalidates_bike(admin_client, create_order):
    order = create_order()

    response = admin_client.put(
        f"/api/admin/purchase-orders/{order['id']}", json={"bikeId": "65f0c0ffee0000000000abcd"}
    )

    assert response.status_code == 404


def test_list_filters_by_partner_and_status(admin_client, create_order, partner):
    create_order(partnersProfit=[{"partnerId": partner["id"], "profit": 100}])
    create_order(buyerName="Other Buyer", status="confirmed")

    by_partner = admin_client.get(f"/api/admin/purchase-orders?partnerId={partner['id']}")
    by_status = admin_client.get("/api/admin/purchase-orders?status=confirmed")
    by_search = admin_client.get("/api/admin/purchase-orders?search=other")

    assert by_partner.get_json()["meta"]["total"] == 1
    assert [order["buyerName"] for order in by_status.get_json()["data"]] == ["Other Buyer"]
    assert [order["buyerName"] for order in by_search.get_json()["data"]] == ["Other Buyer"]


def test_delete_pending_order(admin_client, create_order):
    order = create_order()

    response = admin_client.delete(f"/api/admin/purchase-orders/{order['id']}")

    assert response.status_code == 200
    assert admin_client.get(f"/api/admin/purchase-orders/{order['id']}").status_code == 404


def test_confirmed_order_cannot_be_deleted(admin_client, create_order):
    order = create_order(status="confirmed")

    response = admin_client.delete(f"/api/admin/purchase-orders/{order['id']}")

    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_stats_endpoint(admin_client, create_order, partner):
    create_order(status="confirmed", partnersProfit=[{"partnerId": partner["id"], "profit": 300}])
    create_order(amount=2000, profit=200)

    response = admin_client.get("/api/admin/purchase-orders/stats?period=7")
    stats = response.get_json()["data"]

    assert response.status_code == 200
    assert stats["overview"]["totalPurchaseOrders"] == 2
    assert stats["overview"]["recentPurchaseOrders"] == 2
    assert stats["overview"]["period"] == "7 days"
    assert stats["financial"]["confirmed"]["netProfit"] == 700
    assert stats["topPartners"][0]["partnerId"] == partner["id"]
    assert stats["monthlyTrends"][-1]["orders"] == 1


def test_stats_rejects_bad_period(admin_client):
    assert admin_client.get("/api/admin/purchase-orders/stats?period=abc").status_code == 400
    assert admin_client.get("/api/admin/purchase-orders/stats?period=0").status_code == 400


def test_stats_rejects_oversized_period(admin_client):
    response = admin_client.get("/api/admin/purchase-orders/stats?period=99999999")

    assert response.status_code == 400
    assert "period" in response.get_json()["message"]
