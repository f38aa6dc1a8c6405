from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from bson import ObjectId

from authorization import Actor
from database import create_document, ensure_indexes
from schemas import Consumer, Courier, GeoPoint, Owner, Product, Restaurant, Role
from security import hash_password

NOW = datetime.now(timezone.utc).replace(microsecond=0)
PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def db():
    client = mongomock.MongoClient(tz_aware=True)
    database = client["food_delivery_test"]
    ensure_indexes(database)
    yield database
    client.close()


def _point(lon, lat, address=None):
    return GeoPoint(coordinates=[lon, lat], address=address)


@pytest.fixture
def make_owner(db):
    counter = iter(range(1, 1000))

    def factory(**overrides):
        n = next(counter)
        fields = dict(
            name=f"Owner {n}",
            email=f"owner{n}@example.com",
            phone="5550000",
            password_hash=PASSWORD_HASH,
            subscription_start_date=NOW - timedelta(days=10),
            subscription_end_date=NOW + timedelta(days=20),
        )
        fields.update(overrides)
        return create_document(db, "owner", Owner(**fields))

    return factory


@pytest.fixture
def make_restaurant(db):
    def factory(owner_id, **overrides):
        fields = dict(
            owner_id=owner_id,
            name="Kebab House",
            address="Main street 1",
            phone="5551111",
            location=_point(29.0, 41.0),
            delivery_fee=5,
        )
        fields.update(overrides)
        return create_document(db, "restaurant", Restaurant(**fields))

    return factory


@pytest.fixture
def make_product(db):
    def factory(restaurant_id, **overrides):
        fields = dict(restaurant_id=restaurant_id, name="Adana", price=10, category="main")
        fields.update(overrides)
        return create_document(db, "product", Product(**fields))

    return factory


@pytest.fixture
def make_courier(db):
    counter = iter(range(1, 1000))

    def factory(restaurant_id, **overrides):
        n = next(counter)
        fields = dict(
            name=f"Courier {n}",
            email=f"courier{n}@example.com",
            phone="5552222",
            password_hash=PASSWORD_HASH,
            restaurant_id=restaurant_id,
            is_verified=True,
        )
        fields.update(overrides)
        return create_document(db, "courier", Courier(**fields))

    return factory


@pytest.fixture
def make_consumer(db):
    counter = iter(range(1, 1000))

    def factory(**overrides):
        n = next(counter)
        fields = dict(
            name=f"Consumer {n}",
            email=f"consumer{n}@example.com",
            phone="5553333",
            password_hash=PASSWORD_HASH,
            address="Side street 2",
            location=_point(29.0, 41.01),
        )
        fields.update(overrides)
        return create_document(db, "consumer", Consumer(**fields))

    return factory


class World:
    """Two owners with one restaurant each, couriers and two consumers."""

    def __init__(self, **ids):
        self.__dict__.update(ids)

    @property
    def owner(self):
        return Actor(self.owner_id, Role.OWNER)

    @property
    def other_owner(self):
        return Actor(self.other_owner_id, Role.OWNER)

    @property
    def courier(self):
        return Actor(self.courier_id, Role.COURIER)

    @property
    def other_courier(self):
        return Actor(self.other_courier_id, Role.COURIER)

    @property
    def consumer(self):
        return Actor(self.consumer_id, Role.CONSUMER)

    @property
    def other_consumer(self):
        return Actor(self.other_consumer_id, Role.CONSUMER)

    @property
    def delivery_location(self):
        return {"type": "Point", "coordinates": [29.0, 41.01], "address": "Side street 2"}


@pytest.fixture
def world(make_owner, make_restaurant, make_product, make_courier, make_consumer):
    owner_id = make_owner()
    restaurant_id = make_restaurant(owner_id)
    other_owner_id = make_owner()
    other_restaurant_id = make_restaurant(other_owner_id, name="Pide Place")
    return World(
        owner_id=owner_id,
        restaurant_id=restaurant_id,
        product_id=make_product(restaurant_id),
        courier_id=make_courier(restaurant_id),
        consumer_id=make_consumer(),
        other_consumer_id=make_consumer(),
        other_owner_id=other_owner_id,
        other_restaurant_id=other_restaurant_id,
        other_product_id=make_product(other_restaurant_id, name="Lahmacun"),
        other_courier_id=make_courier(other_restaurant_id),
    )


@pytest.fixture
def missing_id():
    return str(ObjectId())
