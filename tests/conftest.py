import pytest

from app import create_app
from database import Database
from ledger import Ledger


@pytest.fixture
def db():
    database = Database(':memory:')
    yield database
    database.close()


@pytest.fixture
def ledger(db):
    return Ledger(db)


@pytest.fixture
def people(ledger):
    alice = ledger.create_user('Alice', 'alice@example.com')
    bob = ledger.create_user('Bob', 'bob@example.com')
    carol = ledger.create_user('Carol', 'carol@example.com')
    return alice, bob, carol


@pytest.fixture
def group(ledger, people):
    alice, bob, carol = people
    group = ledger.create_group('Weekend Trip', alice.id)
    ledger.add_member(group.id, email=bob.email)
    ledger.add_member(group.id, email=carol.email)
    return group


@pytest.fixture
def client(db):
    app = create_app(db)
    app.config['TESTING'] = True
    return app.test_client()
