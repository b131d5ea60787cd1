# tests/conftest.py
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""

from datetime import date, datetime

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from marketplace_search.db import Base, SessionLocal, engine
from marketplace_search.models import (
    AttributeDefinition, AttributeValue, Category, CategoryAttribute,
    CategoryKeyword, City, Listing, TransactionType,
)
from marketplace_search.taxonomy import TaxonomyHolder, TaxonomyIndex, build_index

# category ids
VEHICLES, CARS, MOTORCYCLES, TRUCKS = 1, 2, 3, 4
REAL_ESTATE, APARTMENTS, JOBS, LANDS = 5, 6, 7, 8
SERVICES, PLUMBING = 9, 10

# city ids
ALEPPO, DAMASCUS, JARAMANA = 1, 2, 3

# attribute ids
PRICE, YEAR, FUEL, FEATURES, COLOR, NEGOTIABLE, AVAILABLE_FROM, ROOMS = range(1, 9)

CATEGORY_ROWS = [
    # id, slug, name_ar, name_en, parent_id, level, sort_order
    (VEHICLES, "vehicles", "مركبات", "Vehicles", None, 0, 1),
    (CARS, "cars", "سيارات", "Cars", VEHICLES, 1, 1),
    (MOTORCYCLES, "motorcycles", "دراجات نارية", "Motorcycles", VEHICLES, 1, 2),
    (TRUCKS, "trucks", "شاحنات", "Trucks", VEHICLES, 1, 3),
    (REAL_ESTATE, "real-estate", "عقارات", "Real Estate", None, 0, 2),
    (APARTMENTS, "apartments", "شقق", "Apartments", REAL_ESTATE, 1, 1),
    (JOBS, "jobs", "وظائف", "Jobs", None, 0, 3),
    (LANDS, "lands", "أراضي", "Lands", REAL_ESTATE, 1, 2),
    (SERVICES, "services", "خدمات", "Services", None, 0, 4),
    (PLUMBING, "plumbing", "سباكة", "Plumbing", SERVICES, 1, 1),
]

KEYWORD_ROWS = [
    (CARS, "سيارة", "ar"),
    (CARS, "car", "en"),
    (MOTORCYCLES, "موتور", "ar"),
    (MOTORCYCLES, "bike", "en"),
    (APARTMENTS, "شقة", "ar"),
]

CATEGORY_ATTRIBUTES = {
    CARS: [PRICE, YEAR, FUEL, FEATURES, COLOR, NEGOTIABLE, AVAILABLE_FROM],
    MOTORCYCLES: [PRICE, YEAR, NEGOTIABLE],
    TRUCKS: [PRICE],
    APARTMENTS: [PRICE, ROOMS, AVAILABLE_FROM],
    LANDS: [PRICE],
}


def category_rows(counts=None):
    """Rows in the shape `crud.load_categories` returns."""
    counts = counts or {}
    return [
        {"id": cid, "slug": slug, "name_ar": ar, "name_en": en, "parent_id": parent,
         "level": level, "sort_order": order, "listing_count": counts.get(cid, 0)}
        for cid, slug, ar, en, parent, level, order in CATEGORY_ROWS
    ]


def city_rows():
    return [
        {"id": ALEPPO, "name_ar": "حلب", "name_en": "Aleppo", "province_ar": "حلب", "province_en": "Aleppo"},
        {"id": DAMASCUS, "name_ar": "دمشق", "name_en": "Damascus", "province_ar": "دمشق", "province_en": "Damascus"},
        {"id": JARAMANA, "name_ar": "جرمانا", "name_en": "Jaramana",
         "province_ar": "ريف دمشق", "province_en": "Rural Damascus"},
    ]


@pytest.fixture
def index():
    """In-memory index mirroring the seeded catalog's shape and active listing counts."""
    counts = {CARS: 3, MOTORCYCLES: 4, TRUCKS: 1, APARTMENTS: 2, LANDS: 5}
    return TaxonomyIndex.from_rows(
        category_rows(counts),
        [{"category_id": c, "keyword": k, "language": lang} for c, k, lang in KEYWORD_ROWS],
        city_rows(),
        {"sale": 1, "rent": 2},
    )


def _listing(db, lid, title, category_id, city_id, created, tt=1, status="active", boosted=False, **values):
    db.add(Listing(
        id=lid, title=title, description=f"{title} for sale", category_id=category_id,
        city_id=city_id, transaction_type_id=tt, status=status, is_boosted=boosted,
        created_at=created,
    ))
    for attr_id, column in values.items():
        db.add(AttributeValue(listing_id=lid, attribute_id=int(attr_id[1:]), **column))


def seed(db):
    for cid, slug, ar, en, parent, level, order in CATEGORY_ROWS:
        db.add(Category(id=cid, slug=slug, name_ar=ar, name_en=en, parent_id=parent,
                        level=level, sort_order=order, is_active=True))
    for cid, kw, lang in KEYWORD_ROWS:
        db.add(CategoryKeyword(category_id=cid, keyword=kw, language=lang))
    for row in city_rows():
        db.add(City(**row))
    db.add(TransactionType(id=1, slug="sale", name_ar="بيع", name_en="Sale"))
    db.add(TransactionType(id=2, slug="rent", name_ar="إيجار", name_en="Rent"))

    db.add_all([
        AttributeDefinition(id=PRICE, slug="price", type="number", name_en="Price", unit="SYP"),
        AttributeDefinition(id=YEAR, slug="year", type="number", name_en="Year", min_value=1950, max_value=2030),
        AttributeDefinition(id=FUEL, slug="fuel", type="select", name_en="Fuel",
                            options=["petrol", "diesel", "electric"]),
        AttributeDefinition(id=FEATURES, slug="features", type="multiselect", name_en="Features",
                            options=["sunroof", "gps", "leather"]),
        AttributeDefinition(id=COLOR, slug="color", type="text", name_en="Color"),
        AttributeDefinition(id=NEGOTIABLE, slug="negotiable", type="boolean", name_en="Negotiable"),
        AttributeDefinition(id=AVAILABLE_FROM, slug="available_from", type="date", name_en="Available from"),
        AttributeDefinition(id=ROOMS, slug="rooms", type="number", name_en="Rooms"),
    ])
    db.flush()
    for cid, attrs in CATEGORY_ATTRIBUTES.items():
        for order, attr_id in enumerate(attrs):
            db.add(CategoryAttribute(category_id=cid, attribute_id=attr_id, sort_order=order,
                                     is_required=attr_id == PRICE))

    # cars: Damascus only, all above 5,000,000
    _listing(db, 101, "Hyundai Elantra 2018", CARS, DAMASCUS, datetime(2024, 1, 1),
             a1={"value_number": 9_000_000}, a2={"value_number": 2018},
             a3={"value_json": ["petrol"]}, a4={"value_json": ["sunroof", "gps"]},
             a5={"value_text": "White"}, a6={"value_boolean": True})
    _listing(db, 102, "Kia Rio 2015", CARS, DAMASCUS, datetime(2024, 1, 2),
             a1={"value_number": 6_500_000}, a2={"value_number": 2015},
             a3={"value_text": "diesel"}, a4={"value_json": ["leather"]},
             a5={"value_text": "Black"}, a6={"value_boolean": False})
    _listing(db, 103, "Toyota Corolla 2020", CARS, DAMASCUS, datetime(2024, 1, 3), boosted=True,
             a1={"value_number": 12_000_000}, a2={"value_number": 2020},
             a3={"value_json": ["petrol"]})
    _listing(db, 104, "Old Mercedes", CARS, ALEPPO, datetime(2024, 1, 4), status="sold",
             a1={"value_number": 1_000_000})

    # motorcycles: Aleppo, three under 5,000,000
    _listing(db, 201, "Honda CG 125", MOTORCYCLES, ALEPPO, datetime(2024, 2, 1),
             a1={"value_number": 800_000}, a2={"value_number": 2019})
    _listing(db, 202, "Yamaha YBR", MOTORCYCLES, ALEPPO, datetime(2024, 2, 2),
             a1={"value_number": 1_200_000}, a2={"value_number": 2021})
    _listing(db, 203, "Suzuki GN", MOTORCYCLES, ALEPPO, datetime(2024, 2, 3),
             a1={"value_number": 2_500_000}, a6={"value_boolean": True})
    _listing(db, 204, "Harley Davidson", MOTORCYCLES, ALEPPO, datetime(2024, 2, 4),
             a1={"value_number": 7_000_000})

    _listing(db, 301, "Mercedes Actros", TRUCKS, DAMASCUS, datetime(2024, 3, 1),
             a1={"value_number": 20_000_000})

    _listing(db, 401, "Furnished flat in Mezzeh", APARTMENTS, DAMASCUS, datetime(2024, 4, 1), tt=2,
             a1={"value_number": 500_000}, a8={"value_number": 3},
             a7={"value_date": date(2024, 5, 1)})
    _listing(db, 402, "Family apartment", APARTMENTS, ALEPPO, datetime(2024, 4, 2),
             a1={"value_number": 150_000_000}, a8={"value_number": 4},
             a7={"value_date": date(2024, 7, 15)})

    # lands: identical timestamps, ordering falls through to id
    for lid, price in zip(range(501, 506), (9, 10, 15, 20, 21)):
        _listing(db, lid, f"Land plot {lid}", LANDS, DAMASCUS, datetime(2024, 5, 1),
                 a1={"value_number": price})
    db.commit()


@pytest.fixture(scope="session")
def seeded_db():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()
    yield SessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(seeded_db):
    session = seeded_db()
    yield session
    session.close()


@pytest.fixture
def seeded_holder(seeded_db):
    session = seeded_db()
    try:
        return TaxonomyHolder(build_index(session))
    finally:
        session.close()


class FakeRedis:
    """The subset of `redis.asyncio.Redis` the search cache uses."""

    def __init__(self, fail=False):
        self.store = {}
        self.ttls = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()
