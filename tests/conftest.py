import pytest

from app import create_app
from authService import signup
from clinicStore import ClinicStore
from drugSuggestions import Suggestion


class StubSuggestionClient:
    def __init__(self):
        self.calls = []

    def suggest(self, patient_history, chief_complaint):
        self.calls.append((patient_history, chief_complaint))
        return Suggestion(drugs=["Paracetamol 500mg"], reasoning="Fever with body ache.")


@pytest.fixture
def suggestion_client():
    return StubSuggestionClient()


@pytest.fixture
def app(suggestion_client):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "PUBLIC_BASE_URL": "http://clinic.test",
        "DRUG_SUGGESTION_CLIENT": suggestion_client,
        "LOG_LEVEL": "DEBUG",
    })
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture
def store(ctx):
    user = signup("sunrise", "secret123", "Sunrise Clinic")
    return ClinicStore(user.id)


@pytest.fixture
def auth_client(client):
    """A client logged in as a freshly signed-up clinic owner."""
    res = client.post("/api/signup", json={"username": "sunrise", "password": "secret123",
                                           "clinicName": "Sunrise Clinic"})
    assert res.status_code == 201
    return client


def register(client, name="Jane Doe", **extra):
    payload = {"name": name, "phone": "555-123-4567", "age": 34, "gender": "Female"}
    payload.update(extra)
    res = client.post("/api/patients", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def add_doctor(client, name="Smith", specialization="General Medicine"):
    res = client.post("/api/doctors", json={"name": name, "specialization": specialization})
    assert res.status_code == 201, res.get_json()
    return res.get_json()
