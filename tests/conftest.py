import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from starklet.api import create_app
from starklet.database import SessionStore, init_db
from starklet.handshake import HandshakeService


class FakeVerifier:
    """Stands in for the chain client: accepts only signatures listed in ``valid``."""

    def __init__(self, valid=("0x1", "0x2")):
        self.valid = list(valid)
        self.calls = []

    def verify_message(self, account_address, typed_data, signature):
        self.calls.append((account_address, typed_data, signature))
        return signature == self.valid


@pytest.fixture()
def memory_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture()
def store(memory_engine):
    return SessionStore(memory_engine)


@pytest.fixture()
def verifier():
    return FakeVerifier()


@pytest.fixture()
def service(store, verifier):
    return HandshakeService(store=store, verifier=verifier)


@pytest.fixture()
def client(service):
    flask_app = create_app(service)
    flask_app.config["TESTING"] = True
    with flask_app.test_client() as c:
        yield c
