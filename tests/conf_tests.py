import os
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from hostel.main import app
from hostel.db import Base, build_engine, get_db, init_database
from hostel.models.room import Room
from hostel.models.user import User
from hostel.services.coordinator import ReservationCoordinator
from hostel.services.identity import StudentDirectory
from hostel.services.inventory import InventoryStore
from hostel.services.ledger import BookingLedger
from hostel.services.projector import OccupancyProjector
from hostel.utils.auth import get_password_hash
from hostel.utils.dependencies import get_projector

# Test database setup
if not os.path.exists("./out"):
    os.makedirs("./out")

SQLALCHEMY_DATABASE_URL = "sqlite:///./out/tests.db"
engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create test tables
init_database(engine)

test_projector = OccupancyProjector(TestingSessionLocal)


# Dependency override
def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_projector] = lambda: test_projector

client = TestClient(app)


# Fixtures
@pytest.fixture(autouse=True)
def clear_db():
    """Clear all data from all tables and the occupancy cache after each test"""
    with engine.connect() as conn:
        trans = conn.begin()
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        trans.commit()
    test_projector.invalidate()


@pytest.fixture
def test_db():
    """Provide a database session for testing"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_next_user():
    """Helper function to generate unique usernames"""
    if not hasattr(get_next_user, "user_count"):
        get_next_user.user_count = 0
    get_next_user.user_count += 1
    return get_next_user.user_count


def make_room(db, number="A101", room_type="Single", capacity=1, price=5000.0, gender=None, hostel=None):
    room = Room(number=number, room_type=room_type, capacity=capacity, occupied=0,
                price=price, gender=gender, hostel=hostel, retired=False)
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


def make_user(db, gender="female", role="student"):
    number = get_next_user()
    user = User(
        username=f"user_{number}",
        email=f"user_{number}@example.com",
        hashed_password="testpassword",
        gender=gender,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_coordinator(db, projector=None, **kwargs):
    """Coordinator over one session; retries do not sleep."""
    kwargs.setdefault("sleep", lambda _: None)
    return ReservationCoordinator(
        inventory=InventoryStore(db),
        ledger=BookingLedger(db),
        projector=projector,
        profile_lookup=StudentDirectory(db).get_student_profile,
        **kwargs,
    )


@pytest.fixture
def test_user_data():
    """Fixture for test user data with unique username"""
    username = get_next_user()
    return {
        "username": f"user_{username}",
        "email": f"user_{username}@example.com",
        "password": "testpassword",
        "gender": "female",
    }


@pytest.fixture
def test_user(test_db):
    """Fixture to create a test student in the database"""
    return make_user(test_db)


def login_headers(db, user_data, role="student"):
    user = User(
        username=user_data["username"],
        email=user_data["email"],
        hashed_password=get_password_hash(user_data["password"]),
        gender=user_data.get("gender"),
        role=role,
    )
    db.add(user)
    db.commit()

    login_response = client.post(
        "/auth/login",
        data={
            "username": user_data["username"],
            "password": user_data["password"],
        },
    )
    token = login_response.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(test_db, test_user_data):
    """Fixture to get authentication headers for a female student"""
    return login_headers(test_db, test_user_data)


@pytest.fixture
def manager_headers(test_db):
    """Fixture to get authentication headers for a hostel manager"""
    number = get_next_user()
    user_data = {
        "username": f"manager_{number}",
        "email": f"manager_{number}@example.com",
        "password": "managerpassword",
    }
    return login_headers(test_db, user_data, role="manager")
