"""
Shared pytest fixtures: one isolated app (in-memory SQLite, fresh
recognition engine, no sweeper thread) per test.
"""
import os

os.environ.setdefault('FLASK_ENV', 'testing')

import json
import time

import pytest

from app import create_app
from config.settings import TestingConfig
from extensions import db as _db
from models import EndUser, Merchant, User


@pytest.fixture
def app():
    """Create a Flask application configured for tests"""
    app = create_app(TestingConfig)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    with app.test_client() as client:
        yield client


@pytest.fixture
def engine(app):
    return app.extensions['recognition']


@pytest.fixture
def merchant(app):
    """Merchant M1: 1 point per euro, reward at 100 points"""
    merchant = Merchant(
        'Bakery M1',
        email='m1@example.com',
        points_per_euro=1,
        points_for_reward=100,
        reward_description='Free croissant',
    )
    _db.session.add(merchant)
    _db.session.commit()
    return merchant


@pytest.fixture
def other_merchant(app):
    merchant = Merchant('Florist M2', email='m2@example.com')
    _db.session.add(merchant)
    _db.session.commit()
    return merchant


def _add_staff(merchant, email, role, password='secret123'):
    user = User(email=email, password=password, merchant_id=merchant.id, role=role)
    _db.session.add(user)
    _db.session.commit()
    return user


def login_headers(client, email, password='secret123'):
    """Log a staff member in and return bearer headers"""
    response = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200, response.data
    token = json.loads(response.data)['data']['access_token']
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def owner(merchant):
    return _add_staff(merchant, 'owner@m1.example.com', 'owner')


@pytest.fixture
def cashier(merchant):
    return _add_staff(merchant, 'cashier@m1.example.com', 'cashier')


@pytest.fixture
def owner_headers(client, owner):
    return login_headers(client, owner.email)


@pytest.fixture
def cashier_headers(client, cashier):
    return login_headers(client, cashier.email)


@pytest.fixture
def other_cashier_headers(client, other_merchant):
    user = _add_staff(other_merchant, 'cashier@m2.example.com', 'cashier')
    return login_headers(client, user.email)


@pytest.fixture
def bob(app):
    """Existing customer with PIN 4321"""
    end_user = EndUser(email='bob@example.com', email_lower='bob@example.com', name='Bob')
    end_user.set_pin('4321')
    _db.session.add(end_user)
    _db.session.commit()
    return end_user


class FakeClock:
    """Stands in for the `time` module behind the recognition stores"""

    def __init__(self, start):
        self.now = float(start)

    def time(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock(monkeypatch):
    fake = FakeClock(time.time())
    monkeypatch.setattr('services.expiring_store.time', fake)
    return fake
