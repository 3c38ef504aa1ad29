from conftest import bike_payload

PRIVATE_FIELDS = {"purchasePrice", "myShare", "partners", "sellerInfo", "serviceHistory"}


def test_create_bike_derives_my_share_from_partners(admin_client, make_partner):
    partner = make_partner()
    response = admin_client.post(
        "/api/admin/bikes",
        json=bike_payload(partners=[{"partnerId": partner["id"], "percentage": 25}]),
    )
    bike = response.get_json()["data"]

    assert response.status_code == 201
    assert bike["myShare"] == 7500
    assert bike["partners"] == [{"partnerId": partner["id"], "percentage": 25}]
    assert bike["serviceHistory"] == []
    assert bike["views"] == 0


def test_explicit_my_share_is_kept(make_bike):
    bike = make_bike(myShare=4000)

    assert bike["myShare"] == 4000


def test_partner_percentages_over_100_are_rejected(admin_client, make_partner):
    first, second = make_partner(), make_partner()
    response = admin_client.post(
        "/api/admin/bikes",
        json=bike_payload(
            partners=[
                {"partnerId": first["id"], "percentage": 60},
                {"partnerId": second["id"], "percentage": 50},
            ]
        ),
    )

    assert response.status_code == 400
    assert "cannot exceed 100%" in response.get_json()["message"]


def test_unknown_partner_is_rejected(admin_client):
    response = admin_client.post(
        "/api/admin/bikes",
        json=bike_payload(partners=[{"partnerId": "65f0c0ffee0000000000abcd", "percentage": 10}]),
    )

    assert response.status_code == 400
    assert "Partner not found" in response.get_json()["message"]


def test_status_update_only_touches_status(admin_client, make_bike):
    bike = make_bike()
    response = admin_client.patch(
        f"/api/admin/bikes/{bike['id']}", json={"updateType": "status", "status": "sold"}
    )
    updated = response.get_json()["data"]

    assert response.status_code == 200
    assert updated["status"] == "sold"
    assert updated["price"] == bike["price"]


def test_status_update_requires_valid_status(admin_client, make_bike):
    bike = make_bike()
    response = admin_client.patch(
        f"/api/admin/bikes/{bike['id']}", json={"updateType": "status", "status": "gone"}
    )

    assert response.status_code == 400


def test_full_update_recomputes_my_share(admin_client, make_bike, make_partner):
    partner = make_partner()
    bike = make_bike(partners=[{"partnerId": partner["id"], "percentage": 20}])

    response = admin_client.patch(f"/api/admin/bikes/{bike['id']}", json={"price": 20000})
    updated = response.get_json()["data"]

    assert response.status_code == 200
    assert updated["price"] == 20000
    assert updated["myShare"] == 16000
    assert updated["title"] == bike["title"]


def test_full_update_rejects_partner_total_over_100(admin_client, make_bike, make_partner):
    first, second = make_partner(), make_partner()
    bike = make_bike()

    response = admin_client.patch(
        f"/api/admin/bikes/{bike['id']}",
        json={
            "partners": [
                {"partnerId": first["id"], "percentage": 70},
                {"partnerId": second["id"], "percentage": 40},
            ]
        },
    )

    assert response.status_code == 400


def test_full_update_rejects_future_year(admin_client, make_bike):
    bike = make_bike()

    response = admin_client.patch(f"/api/admin/bikes/{bike['id']}", json={"year": 2999})

    assert response.status_code == 400
    stored = admin_client.get(f"/api/admin/bikes/{bike['id']}").get_json()["data"]
    assert stored["year"] == bike["year"]


def test_clearing_my_share_derives_it_again(admin_client, make_bike, make_partner):
    partner = make_partner()
    bike = make_bike(myShare=4000, partners=[{"partnerId": partner["id"], "percentage": 20}])

    response = admin_client.patch(f"/api/admin/bikes/{bike['id']}", json={"myShare": None})

    assert response.status_code == 200
    assert response.get_json()["data"]["myShare"] == 8000


def test_delete_is_soft(admin_client, client, make_bike):
    bike = make_bike()

    response = admin_client.delete(f"/api/admin/bikes/{bike['id']}")
    assert response.status_code == 200

    stored = admin_client.get(f"/api/admin/bikes/{bike['id']}").get_json()["data"]
    assert stored["status"] == "inactive"
    assert client.get(f"/api/public/bikes/{bike['id']}").status_code == 404
    assert client.get("/api/public/bikes").get_json()["data"] == []


def test_invalid_bike_id(admin_client):
    response = admin_client.get("/api/admin/bikes/not-an-id")

    assert response.status_code == 400
    assert response.get_json()["message"] == "Invalid bike ID"


def test_missing_bike(admin_client):
    response = admin_client.get("/api/admin/bikes/65f0c0ffee0000000000abcd")

    assert response.status_code == 404


def test_admin_list_is_paginated(admin_client, make_bike):
    for index in range(3):
        make_bike(title=f"Listing number {index}", price=1000 + index)

    response = admin_client.get("/api/admin/bikes?limit=2&sortBy=price&sortOrder=asc")
    body = response.get_json()

    assert response.status_code == 200
    assert [bike["price"] for bike in body["data"]] == [1000, 1001]
    assert body["meta"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}


def test_public_list_hides_private_fields(client, make_bike):
    make_bike(sellerInfo={"name": "Seller", "phone": "01700000000"})
    make_bike(title="Hidden pending bike", status="pending")

    response = client.get("/api/public/bikes")
    bikes = response.get_json()["data"]

    assert response.status_code == 200
    assert len(bikes) == 1
    assert PRIVATE_FIELDS.isdisjoint(bikes[0])
    assert response.get_json()["meta"]["total"] == 1


def test_public_list_filters(client, make_bike):
    make_bike(title="Cheap commuter", price=500, condition="fair")
    make_bike(title="Premium sports", price=50000, condition="excellent")

    by_price = client.get("/api/public/bikes?minPrice=1000").get_json()["data"]
    by_condition = client.get("/api/public/bikes?condition=fair").get_json()["data"]
    by_search = client.get("/api/public/bikes?search=premium").get_json()["data"]

    assert [bike["title"] for bike in by_price] == ["Premium sports"]
    assert [bike["title"] for bike in by_condition] == ["Cheap commuter"]
    assert [bike["title"] for bike in by_search] == ["Premium sports"]


def test_public_detail_increments_views(client, make_bike):
    bike = make_bike()

    first = client.get(f"/api/public/bikes/{bike['id']}").get_json()["data"]
    second = client.get(f"/api/public/bikes/{bike['id']}").get_json()["data"]

    assert first["views"] == 1
    assert second["views"] == 2
    assert PRIVATE_FIELDS.isdisjoint(second)


def test_featured_and_sold_showcases(client, make_bike):
    make_bike(title="Featured ride", isFeatured=True)
    make_bike(title="Regular ride")
    make_bike(title="Already sold", status="sold")

    featured = client.get("/api/public/bikes/featured").get_json()["data"]
    sold = client.get("/api/public/bikes/sold?limit=3").get_json()["data"]

    assert [bike["title"] for bike in featured] == ["Featured ride"]
    assert [bike["title"] for bike in sold] == ["Already sold"]


def test_wash_location_lifecycle(admin_client, client):
    payload = {
        "location": "Gulshan Bike Spa",
        "map": "https://maps.example.com/gulshan",
        "price": 350,
        "features": ["Foam wash", "Chain lube"],
    }
    created = admin_client.post("/api/admin/bike-wash", json=payload)
    location = created.get_json()["data"]
    assert created.status_code == 201

    duplicate = admin_client.post(
        "/api/admin/bike-wash", json={**payload, "location": "gulshan bike spa"}
    )
    assert duplicate.status_code == 409

    public = client.get("/api/public/bike-wash").get_json()["data"]
    assert [entry["location"] for entry in public] == ["Gulshan Bike Spa"]

    renamed = admin_client.patch(
        f"/api/admin/bike-wash/{location['id']}", json={"price": 400}
    ).get_json()["data"]
    assert renamed["price"] == 400
    assert renamed["location"] == "Gulshan Bike Spa"

    toggled = admin_client.patch(
        f"/api/admin/bike-wash/{location['id']}", json={"updateType": "status", "status": "inactive"}
    )
    assert toggled.get_json()["data"]["status"] == "inactive"
    assert client.get("/api/public/bike-wash").get_json()["data"] == []

    admin_client.patch(
        f"/api/admin/bike-wash/{location['id']}", json={"updateType": "status", "status": "active"}
    )
    assert admin_client.delete(f"/api/admin/bike-wash/{location['id']}").status_code == 200
    listed = admin_client.get("/api/admin/bike-wash?status=inactive").get_json()["data"]
    assert [entry["id"] for entry in listed] == [location["id"]]


def test_wash_location_requires_map_url(admin_client):
    response = admin_client.post(
        "/api/admin/bike-wash", json={"location": "Nowhere", "map": "not a url", "price": 100}
    )

    assert response.status_code == 400


def test_public_info_profile(admin_client, client):
    assert client.get("/api/public/info").status_code == 404

    payload = {
        "phone": ["01700000000", "  "],
        "email": "hello@bahonxbd.com",
        "availableTimes": ["Sat-Thu 10am-8pm"],
        "location": "Dhaka",
        "map": "https://maps.example.com/shop",
    }
    created = admin_client.post("/api/admin/profile", json=payload)
    assert created.status_code == 201
    assert created.get_json()["data"]["phone"] == ["01700000000"]

    assert admin_client.post("/api/admin/profile", json=payload).status_code == 409

    updated = admin_client.put("/api/admin/profile", json={**payload, "location": "Chattogram"})
    assert updated.status_code == 200

    public = client.get("/api/public/info").get_json()["data"]
    assert public["location"] == "Chattogram"
    assert public["availableTimes"] == ["Sat-Thu 10am-8pm"]


def test_public_info_requires_a_phone(admin_client):
    response = admin_client.post(
        "/api/admin/profile",
        json={"phone": [" "], "email": "a@b.co", "availableTimes": ["9-5"], "location": "Dhaka"},
    )

    assert response.status_code == 400
