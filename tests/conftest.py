from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from petshop.api import create_app
from petshop.config import Settings
from petshop.database import Database
from petshop.models import Category, Product, Service, User, UserRole
from petshop.security import hash_password, token_for_user

TEST_PASSWORD = "secret123"


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture
def database(settings):
    database = Database(settings.database_url)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def app(settings, database):
    return create_app(settings, database=database)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def db(database, client):
    # closed before the client shuts the app (and its engine) down
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    def _make_user(email, role=UserRole.CUSTOMER, full_name="Test User", is_active=True):
        user = User(
            full_name=full_name,
            email=email,
            hashed_password=hash_password(TEST_PASSWORD, rounds=4),
            role=role,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user("customer@example.com", full_name="Casey Customer")


@pytest.fixture
def other_customer(make_user):
    return make_user("other@example.com", full_name="Robin Other")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role=UserRole.ADMIN, full_name="Alex Admin")


@pytest.fixture
def auth_headers(settings):
    def _auth_headers(user):
        return {"Authorization": f"Bearer {token_for_user(user, settings)}"}

    return _auth_headers


@pytest.fixture
def customer_headers(customer, auth_headers):
    return auth_headers(customer)


@pytest.fixture
def other_headers(other_customer, auth_headers):
    return auth_headers(other_customer)


@pytest.fixture
def admin_headers(admin, auth_headers):
    return auth_headers(admin)


@pytest.fixture
def category(db):
    category = Category(name="Dog Food", description="Kibble and treats")
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


@pytest.fixture
def make_product(db, category):
    def _make_product(name="Puppy Kibble", price="100000", stock=5, is_active=True, **extra):
        product = Product(
            name=name,
            price=Decimal(price),
            stock_quantity=stock,
            category_id=category.id,
            is_active=is_active,
            **extra,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make_product


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def service(db):
    service = Service(name="Full Grooming", price=Decimal("150000"), duration=60)
    db.add(service)
    db.commit()
    db.refresh(service)
    return service