import pytest

from app import create_app
from auth import AuthError, Identity
from models import db

TEST_STATE = "test-state"


class FakeVerifier:
    """Stands in for Google: hands back a fixed identity, or raises `error`."""

    def __init__(self):
        self.identity = Identity("g-42", "Jan Kowalski")
        self.error = None

    def new_state(self):
        return TEST_STATE

    def authorize_url(self, state):
        return f"https://accounts.example.com/auth?state={state}"

    def verify(self, args, expected_state):
        if self.error is not None:
            raise self.error
        if args.get("state") != expected_state:
            raise AuthError("state mismatch")
        return self.identity


TEST_CONFIG = {
    "TESTING": True,
    "SECRET_KEY": "test-secret",
    "STORE_BACKEND": "sql",
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "MATCHES_FILE": None,
}


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def app(verifier):
    app = create_app(TEST_CONFIG, verifier=verifier)
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["store"]


def login(client):
    client.get("/auth/start")
    return client.get(f"/auth/callback?state={TEST_STATE}&code=abc")


@pytest.fixture
def logged_in(client):
    login(client)
    return client
