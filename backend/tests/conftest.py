"""
Pytest fixtures for Lockstock backend tests.

Provides test database setup, two tenant organizations with one user per role,
catalog records in each tenant, and helpers for authenticated HTTP calls.
"""

import pytest
from lockstock import create_app
from lockstock.extensions import db
from lockstock.models import Location, Material, Organization, OrgMember, Supplier, User
from lockstock.permissions import ROLE_MANAGER, ROLE_MEMBER, ROLE_OWNER, ROLE_VIEWER
from lockstock.services.auth_service import hash_password
from lockstock.services.authorization_service import AuthorizationContext
from lockstock.services.session_service import create_session


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash(app):
    """One bcrypt hash shared by every fixture user."""
    return hash_password(PASSWORD)


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


def _make_user(db_session, username: str, password_hash: str) -> User:
    user = User(username=username, email=f"{username}@example.com", password_hash=password_hash)
    db_session.add(user)
    db_session.commit()
    return user


def _join(db_session, org: Organization, user: User, role: str) -> None:
    db_session.add(OrgMember(org_id=org.id, user_id=user.id, role=role))
    db_session.commit()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Builders", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Renovations", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def owner_a(db_session, org_a, password_hash):
    user = _make_user(db_session, "owner_a", password_hash)
    _join(db_session, org_a, user, ROLE_OWNER)
    return user


@pytest.fixture(scope='function')
def manager_a(db_session, org_a, password_hash):
    user = _make_user(db_session, "manager_a", password_hash)
    _join(db_session, org_a, user, ROLE_MANAGER)
    return user


@pytest.fixture(scope='function')
def member_a(db_session, org_a, password_hash):
    user = _make_user(db_session, "member_a", password_hash)
    _join(db_session, org_a, user, ROLE_MEMBER)
    return user


@pytest.fixture(scope='function')
def viewer_a(db_session, org_a, password_hash):
    user = _make_user(db_session, "viewer_a", password_hash)
    _join(db_session, org_a, user, ROLE_VIEWER)
    return user


@pytest.fixture(scope='function')
def owner_b(db_session, org_b, password_hash):
    user = _make_user(db_session, "owner_b", password_hash)
    _join(db_session, org_b, user, ROLE_OWNER)
    return user


@pytest.fixture(scope='function')
def outsider(db_session, password_hash):
    """A user with no membership anywhere."""
    return _make_user(db_session, "outsider", password_hash)


@pytest.fixture(scope='function')
def manager_ctx(org_a, manager_a):
    return AuthorizationContext(org_id=org_a.id, user_id=manager_a.id, role=ROLE_MANAGER)


@pytest.fixture(scope='function')
def member_ctx(org_a, member_a):
    return AuthorizationContext(org_id=org_a.id, user_id=member_a.id, role=ROLE_MEMBER)


@pytest.fixture(scope='function')
def viewer_ctx(org_a, viewer_a):
    return AuthorizationContext(org_id=org_a.id, user_id=viewer_a.id, role=ROLE_VIEWER)


@pytest.fixture(scope='function')
def owner_b_ctx(org_b, owner_b):
    return AuthorizationContext(org_id=org_b.id, user_id=owner_b.id, role=ROLE_OWNER)


@pytest.fixture(scope='function')
def material_a(db_session, org_a):
    material = Material(org_id=org_a.id, sku="CEM-25", name="Cement 25kg", uom="bag", min_stock=5)
    db_session.add(material)
    db_session.commit()
    return material


@pytest.fixture(scope='function')
def material_a2(db_session, org_a):
    material = Material(org_id=org_a.id, sku="SND-01", name="Sand", uom="ton", min_stock=2)
    db_session.add(material)
    db_session.commit()
    return material


@pytest.fixture(scope='function')
def location_a(db_session, org_a):
    location = Location(org_id=org_a.id, name="Main warehouse", code="WH1")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def location_a2(db_session, org_a):
    location = Location(org_id=org_a.id, name="Site van", code="VAN")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def supplier_a(db_session, org_a):
    supplier = Supplier(org_id=org_a.id, name="Acme Supply", lead_time_days=7)
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def material_b(db_session, org_b):
    material = Material(org_id=org_b.id, sku="CEM-25", name="Cement (Beta)", min_stock=1)
    db_session.add(material)
    db_session.commit()
    return material


@pytest.fixture(scope='function')
def location_b(db_session, org_b):
    location = Location(org_id=org_b.id, name="Beta yard")
    db_session.add(location)
    db_session.commit()
    return location


@pytest.fixture(scope='function')
def supplier_b(db_session, org_b):
    supplier = Supplier(org_id=org_b.id, name="Beta Supply")
    db_session.add(supplier)
    db_session.commit()
    return supplier


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json["data"]["token"]
    return None


def auth_headers(user: User, org: Organization | None = None) -> dict:
    """Bearer headers for a user, optionally targeting an organization."""
    _, token = create_session(user.id)
    headers = {'Authorization': f'Bearer {token}'}
    if org is not None:
        headers['X-Org-Id'] = str(org.id)
    return headers


@pytest.fixture(scope='function')
def headers_for(db_session):
    """auth_headers as a fixture: headers_for(user, org=None)."""
    return auth_headers
