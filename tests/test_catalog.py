import pytest

import catalog
from config import SEARCH_RESULT_LIMIT
from database import find_by_id
from errors import Conflict, NotFound, Unauthorized, ValidationError
from tests.conftest import PASSWORD

RESTAURANT = {
    "name": "Doner Corner",
    "address": "Harbour road 3",
    "phone": "5556666",
    "location": {"type": "Point", "coordinates": [29.02, 41.0]},
    "delivery_fee": 7.5,
}


def courier_data(n, **overrides):
    data = {"name": f"Rider {n}", "email": f"rider{n}@example.com", "phone": "5557777", "password": PASSWORD}
    data.update(overrides)
    return data


def test_owner_creates_restaurant_for_themselves(db, world):
    created = catalog.create_restaurant(db, world.owner, {**RESTAURANT, "owner_id": world.other_owner_id})
    assert created["owner_id"] == world.owner_id
    assert created["name"] == "Doner Corner"

    listed = catalog.list_owner_restaurants(db, world.owner)
    assert listed["pagination"]["total"] == 2
    with pytest.raises(Unauthorized):
        catalog.create_restaurant(db, world.consumer, RESTAURANT)


def test_restaurant_update_whitelist(db, world):
    updated = catalog.update_restaurant(db, world.owner, world.restaurant_id, {"is_open": False, "delivery_fee": 9})
    assert updated["is_open"] is False
    assert updated["delivery_fee"] == 9

    with pytest.raises(ValidationError):
        catalog.update_restaurant(db, world.owner, world.restaurant_id, {"owner_id": world.other_owner_id})
    with pytest.raises(ValidationError):
        catalog.update_restaurant(db, world.owner, world.restaurant_id, {"delivery_fee": -1})
    with pytest.raises(NotFound):
        catalog.update_restaurant(db, world.other_owner, world.restaurant_id, {"is_open": False})


def test_get_owner_restaurant_hides_foreign_restaurants(db, world):
    assert catalog.get_owner_restaurant(db, world.owner, world.restaurant_id)["id"] == world.restaurant_id
    with pytest.raises(NotFound):
        catalog.get_owner_restaurant(db, world.owner, world.other_restaurant_id)


def test_delete_restaurant_cascades(db, world):
    catalog.delete_restaurant(db, world.owner, world.restaurant_id)

    assert find_by_id(db, "product", world.product_id) is None
    courier = find_by_id(db, "courier", world.courier_id)
    assert courier["is_active"] is False
    assert courier["status"] == "offline"
    with pytest.raises(NotFound):
        catalog.get_restaurant(db, world.restaurant_id)
    # the other owner's data is untouched
    assert find_by_id(db, "product", world.other_product_id) is not None


def test_orphaned_courier_is_unreachable(db, world):
    db["restaurant"].delete_one({"_id": find_by_id(db, "restaurant", world.restaurant_id)["_id"]})
    with pytest.raises(NotFound):
        catalog.update_courier(db, world.owner, world.courier_id, {"name": "Renamed"})
    with pytest.raises(NotFound):
        catalog.update_product(db, world.owner, world.product_id, {"price": 1})


def test_products(db, world):
    created = catalog.create_product(db, world.owner, world.restaurant_id, {
        "name": "Ayran", "price": 2.5, "category": "drinks", "restaurant_id": world.other_restaurant_id,
    })
    assert created["restaurant_id"] == world.restaurant_id

    with pytest.raises(NotFound):
        catalog.create_product(db, world.other_owner, world.restaurant_id, {"name": "X", "price": 1, "category": "c"})
    with pytest.raises(ValidationError):
        catalog.update_product(db, world.owner, created["id"], {"restaurant_id": world.other_restaurant_id})

    catalog.update_product(db, world.owner, created["id"], {"is_available": False})
    assert catalog.list_products(db, world.restaurant_id)["pagination"]["total"] == 2
    available = catalog.list_products(db, world.restaurant_id, available_only=True)
    assert [p["id"] for p in available["items"]] == [world.product_id]

    catalog.delete_product(db, world.owner, created["id"])
    with pytest.raises(NotFound):
        catalog.delete_product(db, world.owner, created["id"])


def test_create_courier(db, world):
    courier = catalog.create_courier(db, world.owner, world.restaurant_id, courier_data(1, email="Rider1@Example.com"))
    assert courier["restaurant_id"] == world.restaurant_id
    assert courier["email"] == "rider1@example.com"
    assert courier["is_verified"] is False
    assert "password_hash" not in courier

    with pytest.raises(Conflict):
        catalog.create_courier(db, world.owner, world.restaurant_id, courier_data(1))
    with pytest.raises(NotFound):
        catalog.create_courier(db, world.other_owner, world.restaurant_id, courier_data(2))


def test_courier_limit_counts_active_couriers(db, world):
    db["owner"].update_one({"_id": find_by_id(db, "owner", world.owner_id)["_id"]}, {"$set": {"max_couriers": 2}})
    catalog.create_courier(db, world.owner, world.restaurant_id, courier_data(1))
    with pytest.raises(Conflict):
        catalog.create_courier(db, world.owner, world.restaurant_id, courier_data(2))

    catalog.update_courier(db, world.owner, world.courier_id, {"is_active": False})
    assert catalog.create_courier(db, world.owner, world.restaurant_id, courier_data(2))["name"] == "Rider 2"


def test_update_courier_whitelist(db, world):
    updated = catalog.update_courier(db, world.owner, world.courier_id, {"status": "online", "vehicle": "scooter"})
    assert updated["status"] == "online"
    assert updated["vehicle"] == "scooter"
    with pytest.raises(ValidationError):
        catalog.update_courier(db, world.owner, world.courier_id, {"email": "x@example.com"})
    with pytest.raises(ValidationError):
        catalog.update_courier(db, world.owner, world.courier_id, {"vehicle": "horse"})


def test_list_couriers(db, world):
    couriers = catalog.list_couriers(db, world.owner, world.restaurant_id)
    assert [c["id"] for c in couriers] == [world.courier_id]
    with pytest.raises(NotFound):
        catalog.list_couriers(db, world.owner, world.other_restaurant_id)

    catalog.delete_courier(db, world.owner, world.courier_id)
    assert catalog.list_couriers(db, world.owner, world.restaurant_id) == []


def test_public_restaurant_listing(db, world):
    catalog.update_restaurant(db, world.owner, world.restaurant_id, {"is_open": False})
    assert catalog.list_restaurants(db)["pagination"]["total"] == 2
    open_only = catalog.list_restaurants(db, is_open=True)
    assert [r["id"] for r in open_only["items"]] == [world.other_restaurant_id]


class RecordingCollection:
    """Collection double for geo queries, which mongomock does not evaluate."""

    def __init__(self, documents):
        self.documents = documents
        self.queries = []
        self.limits = []

    def find(self, query):
        self.queries.append(query)
        return self

    def limit(self, n):
        self.limits.append(n)
        return list(self.documents[:n])


def test_nearby_query_uses_the_location_index():
    assert catalog.nearby_query(41.0, 29.0, 2500) == {
        "location": {
            "$nearSphere": {
                "$geometry": {"type": "Point", "coordinates": [29.0, 41.0]},
                "$maxDistance": 2500,
            }
        }
    }


def test_location_has_a_geo_index(db):
    keys = [index["key"] for index in db["restaurant"].index_information().values()]
    assert [("location", "2dsphere")] in keys


def test_search_restaurants_near_a_point(db, world):
    docs = [
        find_by_id(db, "restaurant", world.restaurant_id),
        {**find_by_id(db, "restaurant", world.other_restaurant_id), "location": RESTAURANT["location"]},
    ]
    restaurants = RecordingCollection(docs)

    nearby = catalog.search_restaurants({"restaurant": restaurants}, lat=41.0, lon=29.0, max_distance_m=3000, q="e")

    query = restaurants.queries[0]
    assert query["name"] == {"$regex": "e", "$options": "i"}
    assert query["location"]["$nearSphere"]["$maxDistance"] == 3000
    assert restaurants.limits == [SEARCH_RESULT_LIMIT]
    assert [r["id"] for r in nearby] == [world.restaurant_id, world.other_restaurant_id]
    assert nearby[0]["distance_km"] == 0
    assert nearby[1]["distance_km"] == 1.68
    assert nearby[1]["estimated_delivery_time_minutes"] == 7


def test_search_restaurants_by_name(db, world, make_restaurant):
    make_restaurant(world.owner_id, name="Far Kebab", location={"type": "Point", "coordinates": [30.0, 41.0]})
    by_name = catalog.search_restaurants(db, q="kebab")
    assert sorted(r["name"] for r in by_name) == ["Far Kebab", "Kebab House"]
    assert all("distance_km" not in r for r in by_name)
