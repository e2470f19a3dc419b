import pytest
import os
from decimal import Decimal
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from app.database import Base, get_db
from app.main import app
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


def make_sqlite_engine(url, **kwargs):
    """
    SQLite engine with foreign keys on and explicit BEGIN, so that
    SAVEPOINT/RELEASE behave like a real transactional database.
    """
    test_engine = create_engine(url, connect_args={"check_same_thread": False}, **kwargs)

    @event.listens_for(test_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(test_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return test_engine


engine = make_sqlite_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool)


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """
    Session bound to an outer connection transaction. Service commits only
    release savepoints, and everything is rolled back after the test.
    """
    connection = engine.connect()
    transaction = connection.begin()
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=connection,
        join_transaction_mode="create_savepoint",
    )
    session = TestingSessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture(scope="function")
def catalog(db_session):
    """Permission keys and default positions, keyed by position name."""
    from app.core.init_system import seed_permission_catalog
    from app.models.position import Position

    seed_permission_catalog(db_session)
    db_session.commit()
    return {p.name: p for p in db_session.query(Position).all()}


@pytest.fixture(scope="function")
def make_employee(db_session, catalog):
    """Factory for employees attached to one of the default positions."""
    from app.models.employee import Employee, EmployeeRole

    counter = {"n": 0}

    def _make_employee(position="Staff", role=EmployeeRole.EMPLOYEE, leave_balance=Decimal("10"), **kwargs):
        counter["n"] += 1
        employee = Employee(
            email=kwargs.pop("email", f"employee{counter['n']}@example.com"),
            first_name=kwargs.pop("first_name", "Test"),
            last_name=kwargs.pop("last_name", f"Employee{counter['n']}"),
            role=role,
            position_id=catalog[position].id if position else None,
            leave_balance=leave_balance,
            is_active=True,
            **kwargs,
        )
        db_session.add(employee)
        db_session.commit()
        db_session.refresh(employee)
        return employee

    return _make_employee


@pytest.fixture(scope="function")
def employee(make_employee):
    """A plain staff member with 10 days of leave credits."""
    return make_employee()


@pytest.fixture(scope="function")
def admin(make_employee):
    """An administrator whose position grants every permission."""
    from app.models.employee import EmployeeRole
    return make_employee(position="Managing Director", role=EmployeeRole.ADMIN, email="admin@example.com")


@pytest.fixture(scope="function")
def hr_admin(make_employee):
    from app.models.employee import EmployeeRole
    return make_employee(position="HR", role=EmployeeRole.ADMIN, email="hr@example.com")


@pytest.fixture(scope="function")
def accounting_admin(make_employee):
    from app.models.employee import EmployeeRole
    return make_employee(position="Accounting", role=EmployeeRole.ADMIN, email="accounting@example.com")


@pytest.fixture(scope="function")
def auth_ctx():
    """Builds the AuthContext a request for this employee would carry."""
    from app.services.authorization import AuthContext
    return AuthContext.from_employee


@pytest.fixture(scope="function")
def store(db_session):
    from app.models.ticket import Store
    store = Store(store_code="ST-001", store_name="Main Street")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope="function")
def ticket(db_session):
    from app.models.ticket import Ticket
    ticket = Ticket(rcc_reference_number="RCC-0001")
    db_session.add(ticket)
    db_session.commit()
    return ticket


@pytest.fixture(scope="function")
def get_token():
    """Helper fixture to create access tokens for an employee."""
    from app.services.auth import create_employee_token

    def _get_token(employee):
        return create_employee_token(employee.id)
    return _get_token


@pytest.fixture(scope="function")
def auth_headers(get_token):
    def _auth_headers(employee):
        return {"Authorization": f"Bearer {get_token(employee)}"}
    return _auth_headers


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
