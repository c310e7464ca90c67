import pytest

from rctracker.errors import AuthError, WeatherError
from rctracker.models import Weather
from rctracker.storage import LocalFileStore


class FakeWeatherClient:
    """Returns (or raises) the scripted outcomes in order and records each lookup."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def lookup(self, lat, lon):
        self.calls.append((lat, lon))
        outcome = self.outcomes.pop(0) if self.outcomes else WeatherError('no scripted outcome')
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeIdentity:
    def __init__(self, tokens=None):
        self.tokens = tokens or {'good-token': {'uid': 'user-1', 'email': 'driver@example.com'}}
        self.signed_out = []
        self.signed_up = []

    def authenticate(self, id_token):
        if id_token not in self.tokens:
            raise AuthError('Invalid token')
        return self.tokens[id_token]

    def sign_up(self, email, password):
        self.signed_up.append(email)
        return 'new-user'

    def sign_out(self, uid):
        self.signed_out.append(uid)


@pytest.fixture
def store(tmp_path):
    return LocalFileStore(str(tmp_path / "data"))


@pytest.fixture
def sunny():
    return Weather(14.2, 'clearsky')


@pytest.fixture
def app_module(monkeypatch, store):
    from rctracker import app as app_module
    monkeypatch.setattr(app_module, 'store', store)
    monkeypatch.setattr(app_module, 'identity', FakeIdentity())
    monkeypatch.setattr(app_module, 'weather_client', FakeWeatherClient(Weather(14.2, 'clearsky')))
    app_module.app.config['TESTING'] = True
    return app_module


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


@pytest.fixture
def auth_client(client):
    with client.session_transaction() as sess:
        sess['fb_uid'] = 'user-1'
        sess['fb_email'] = 'driver@example.com'
    return client


@pytest.fixture
def make_weather():
    return FakeWeatherClient
