"""
Pytest fixtures for rackstock backend tests.

Provides the in-memory database, a wiped session per test, and a small
registry: two items, two warehouses and two logical racks.
"""

import pytest

from rackstock import create_app
from rackstock.extensions import db
from rackstock.services import registry_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def item_x(db_session):
    return registry_service.create_item(
        name="Laser Printer",
        model_no="LP-100",
        company_name="Acme",
        min_stock_alert=5,
        unit="pcs",
    )


@pytest.fixture(scope='function')
def item_y(db_session):
    return registry_service.create_item(
        name="Barcode Scanner",
        model_no="BS-7",
        company_name="Acme",
        min_stock_alert=2,
    )


@pytest.fixture(scope='function')
def wh_main(db_session):
    return registry_service.create_warehouse("Main", "Dhaka")


@pytest.fixture(scope='function')
def wh_north(db_session, wh_main):
    return registry_service.create_warehouse("North", "Chattogram")


@pytest.fixture(scope='function')
def racks(db_session, wh_main, wh_north):
    """{(warehouse name, rack name): Location} for Rack A and Rack B in both warehouses."""
    registry_service.create_location("Rack A")
    registry_service.create_location("Rack B")
    return {
        (loc.warehouse.name, loc.name): loc
        for loc in registry_service.list_locations()
    }


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """
    App on a file-backed SQLite database.

    Each thread's app context gets its own session and connection, so tests can
    run two writers against the same rows.
    """
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
