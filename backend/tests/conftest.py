"""
Pytest fixtures for lettings backend tests.

Provides test database setup, agency fixtures, property/bedroom stock, and a
helper that drives a tenancy through the lifecycle.
"""

from datetime import date
from decimal import Decimal

import pytest

from lettings import create_app
from lettings.extensions import db
from lettings.models import Agency, Application, Bedroom, Property
from lettings.services import lifecycle_service

from factories import member, sign_all


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'ROLLING_JOB_ENABLED': False,
    'RETRY_BACKOFF_BASE': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


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
        db.session.remove()


@pytest.fixture(scope='function')
def agency(db_session):
    """Agency A (first tenant)."""
    agency = Agency(name="Northside Lettings", code="NSL", is_active=True)
    db_session.add(agency)
    db_session.commit()
    return agency


@pytest.fixture(scope='function')
def other_agency(db_session):
    """Agency B (second tenant)."""
    agency = Agency(name="Southside Homes", code="SSH", is_active=True)
    db_session.add(agency)
    db_session.commit()
    return agency


@pytest.fixture(scope='function')
def house(db_session, agency):
    """A four-bedroom property in agency A."""
    prop = Property(agency_id=agency.id, address_line1="12 Hyde Park Road", city="Leeds", postcode="LS6 1AA")
    prop.bedrooms = [
        Bedroom(name=f"Room {n}", base_rent_pppw=Decimal("100.00")) for n in range(1, 5)
    ]
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture(scope='function')
def rooms(house):
    return list(house.bedrooms)


@pytest.fixture(scope='function')
def application(db_session, agency):
    """An approved applicant without a guarantor."""
    app_row = Application(
        agency_id=agency.id,
        first_name="Alex",
        surname="Morgan",
        email="alex@example.com",
        status="approved",
    )
    db_session.add(app_row)
    db_session.commit()
    return app_row


@pytest.fixture(scope='function')
def scope_headers(app, agency):
    return {app.config['AGENCY_SCOPE_HEADER']: str(agency.id)}


@pytest.fixture(scope='function')
def make_tenancy(db_session, agency, house):
    """Factory: create a pending tenancy with sensible defaults."""
    def _make(members, *, start=date(2025, 9, 1), end=date(2026, 8, 31), tenancy_type="whole_house",
              rolling=False, auto_generate=True, agency_id=None, property_id=None):
        return lifecycle_service.create_tenancy(
            agency_id=agency_id or agency.id,
            property_id=property_id or house.id,
            start_date=start,
            end_date=None if rolling else end,
            tenancy_type=tenancy_type,
            members=members,
            is_rolling_periodic=rolling,
            auto_generate_payments=auto_generate,
        )
    return _make


@pytest.fixture(scope='function')
def active_tenancy(make_tenancy, agency, rooms):
    """Two-member fixed-term tenancy taken all the way to active."""
    tenancy = make_tenancy([
        member("Alex", "Morgan", rooms[0], rent="100.00", deposit="400.00"),
        member("Sam", "Lee", rooms[1], rent="120.00", deposit="480.00"),
    ])
    sign_all(tenancy, agency.id)
    lifecycle_service.activate_tenancy(tenancy.id, agency_id=agency.id)
    return lifecycle_service.get_tenancy(tenancy.id, agency_id=agency.id)
