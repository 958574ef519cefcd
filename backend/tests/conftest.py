"""
Pytest Konfiguration und gemeinsame Fixtures
"""
import itertools
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.database import Base, get_db
from app.core.events import EventBus
from app.models.enums import OrderLineUnit
from app.models.order import Order, OrderLine
from app.models.product import GrowPlan, ProductMix, MixComponent
from app.models.seed import Seed
from app.services.order_status import register_order_status_handlers


# Test-Datenbank (SQLite in-memory)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite: Transaktionen selbst starten, damit SAVEPOINTs funktionieren
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Test-DB Session"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


# Dependency Override
app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function")
def db():
    """Datenbankverbindung für Tests"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client():
    """Test Client mit frischer Datenbank"""
    # Auth Override
    from app.api.deps import get_current_user
    async def override_auth():
        return {
            "id": "123e4567-e89b-12d3-a456-426614174000",
            "username": "testuser",
            "email": "test@example.com",
            "roles": ["admin", "production_planner"]
        }

    app.dependency_overrides[get_current_user] = override_auth

    Base.metadata.create_all(bind=engine)
    yield TestClient(app)
    Base.metadata.drop_all(bind=engine)

    # Cleanup overrides
    app.dependency_overrides.pop(get_current_user, None)


@pytest.fixture
def bus():
    """Eigener Event-Bus mit Order-Status-Handlern"""
    bus = EventBus()
    register_order_status_handlers(bus)
    return bus


@pytest.fixture
def today():
    return date.today()


@pytest.fixture
def past():
    """Zeitpunkt in der Vergangenheit als Basis für Stufenwechsel"""
    return datetime.utcnow().replace(microsecond=0) - timedelta(days=20)


# ==================== MODEL FACTORIES ====================

@pytest.fixture
def seed_factory(db):
    def create(name="Sonnenblume", **kwargs):
        seed = Seed(name=name, **kwargs)
        db.add(seed)
        db.flush()
        return seed
    return create


@pytest.fixture
def grow_plan_factory(db):
    counter = itertools.count(1)

    def create(seed, **kwargs):
        values = {
            "code": f"GP-{next(counter):03d}",
            "name": f"Profil {seed.name}",
            "seed_soak_hours": 0,
            "germination_days": 2,
            "blackout_days": 0,
            "light_days": 8,
            "buffer_percentage": Decimal("10"),
            "yield_grams_per_unit": Decimal("200"),
        }
        values.update(kwargs)
        grow_plan = GrowPlan(seed_id=seed.id, **values)
        db.add(grow_plan)
        db.flush()
        return grow_plan
    return create


@pytest.fixture
def order_factory(db):
    counter = itertools.count(1)

    def create(lines, delivery_date=None, customer_name="Restaurant Schumann"):
        """`lines`: Liste aus (seed_or_mix, menge[, einheit[, erntedatum]])"""
        order = Order(
            order_number=f"BE-TEST-{next(counter):04d}",
            customer_name=customer_name,
            delivery_date=delivery_date or date.today() + timedelta(days=30),
        )
        for position, entry in enumerate(lines, start=1):
            product, quantity = entry[0], entry[1]
            unit = entry[2] if len(entry) > 2 else OrderLineUnit.G
            harvest_date = entry[3] if len(entry) > 3 else None
            line = OrderLine(
                position=position,
                quantity=Decimal(str(quantity)),
                unit=unit,
                harvest_date=harvest_date,
            )
            if isinstance(product, ProductMix):
                line.mix_id = product.id
            else:
                line.seed_id = product.id
            order.lines.append(line)
        db.add(order)
        db.flush()
        return order
    return create


@pytest.fixture
def mix_factory(db):
    def create(name, shares):
        """`shares`: Liste aus (seed, prozent)"""
        mix = ProductMix(name=name)
        for seed, percentage in shares:
            mix.components.append(MixComponent(seed_id=seed.id, percentage=Decimal(str(percentage))))
        db.add(mix)
        db.flush()
        return mix
    return create


@pytest.fixture
def sunflower(seed_factory, grow_plan_factory):
    """Sonnenblume: 2 Tage Keimung, 8 Tage Licht, 200 g/Tray"""
    seed = seed_factory("Sonnenblume", sorte="Black Oil")
    grow_plan_factory(seed, code="GP-SONNE")
    return seed


@pytest.fixture
def pea(seed_factory, grow_plan_factory):
    """Erbse: 8h Einweichen, 2 Tage Keimung, 3 Tage Dunkel, 7 Tage Licht, 300 g/Tray"""
    seed = seed_factory("Erbse")
    grow_plan_factory(
        seed,
        code="GP-ERBSE",
        seed_soak_hours=8,
        germination_days=2,
        blackout_days=3,
        light_days=7,
        yield_grams_per_unit=Decimal("300"),
    )
    return seed


# ==================== API FIXTURES ====================

@pytest.fixture
def sample_seed(client):
    """Erstellt ein Test-Saatgut"""
    response = client.post("/api/v1/seeds", json={
        "name": "Sonnenblume",
        "sorte": "Black Oil",
        "lieferant": "BioSaat GmbH",
    })
    return response.json()


@pytest.fixture
def sample_grow_plan(client, sample_seed):
    """Erstellt ein Test-Wachstumsprofil"""
    response = client.post("/api/v1/grow-plans", json={
        "seed_id": sample_seed["id"],
        "code": "GP-TEST",
        "name": "Test Wachstumsprofil",
        "seed_soak_hours": 8,
        "germination_days": 2,
        "blackout_days": 3,
        "light_days": 5,
        "buffer_percentage": 10,
        "yield_grams_per_unit": 200,
    })
    return response.json()
