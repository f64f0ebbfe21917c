"""
Pytest configuration and fixtures for Campus Idle tests.

Fixtures are reusable test data/objects that tests can use.
Unit tests work inside an app context and call the services directly;
integration tests talk to the JSON routes through the Flask test client.
"""
import os

# Configure the app before it is imported: in-memory DB, no rate limiting,
# no Gemini key (the listing assistant answers with its fallback)
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ['CACHE_TYPE'] = 'SimpleCache'
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ.pop('GEMINI_API_KEY', None)

import pytest
from app import app, db
from catalog import cache
import accounts
import catalog

app.config['TESTING'] = True


def _reset_database():
    db.session.remove()
    db.drop_all()
    db.create_all()
    cache.clear()


@pytest.fixture(scope='function')
def app_ctx():
    """
    App context with fresh tables for service-level tests.

    Everything created inside a test using this fixture lives in the same
    database session, so objects can be passed straight to the services.
    """
    with app.app_context():
        _reset_database()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def seller(app_ctx):
    """A registered user who lists items. Password: sellerpass"""
    return accounts.register('seller_sam', 'sellerpass')


@pytest.fixture
def buyer(app_ctx):
    """A registered user who buys items. Password: buyerpass"""
    return accounts.register('buyer_bea', 'buyerpass')


@pytest.fixture
def other_buyer(app_ctx):
    return accounts.register('buyer_ben', 'buyerpass')


@pytest.fixture
def item(seller):
    """An active item for sale at 50, listed by ``seller``."""
    return catalog.create({
        'title': 'Desk Lamp',
        'description': 'Warm light, barely used',
        'price': 50,
        'type': 'sell',
        'category': 'lifestyle',
        'image_urls': ['https://example.com/lamp.jpg'],
    }, seller)


@pytest.fixture(scope='function')
def client():
    """
    Test client over a fresh database.

    No app context is held open between requests, so each request resolves
    its own user from the session token. Wrap direct DB access in
    ``with app.app_context():``.
    """
    with app.app_context():
        _reset_database()
    yield app.test_client()
    with app.app_context():
        db.session.remove()
        db.drop_all()


def auth_headers(token):
    return {'Authorization': f'Bearer {token}'}


def register_user(client, username, password='password123'):
    """Register through the API. Returns (user_dict, token)."""
    response = client.post('/auth/register', json={'username': username, 'password': password})
    assert response.status_code == 201, response.get_json()
    data = response.get_json()
    return data['user'], data['token']


@pytest.fixture
def seller_account(client):
    user, token = register_user(client, 'seller_sam')
    return {'user': user, 'token': token, 'headers': auth_headers(token)}


@pytest.fixture
def buyer_account(client):
    user, token = register_user(client, 'buyer_bea')
    return {'user': user, 'token': token, 'headers': auth_headers(token)}


@pytest.fixture
def listed_item(client, seller_account):
    """An item listed through the API by ``seller_account``."""
    response = client.post('/items', json={
        'title': 'Mini Fridge',
        'description': 'Fits under a dorm desk',
        'price': 50,
        'type': 'sell',
        'category': 'electronics',
    }, headers=seller_account['headers'])
    assert response.status_code == 201
    return response.get_json()
