import os
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")

from clearview.main import app  # noqa: E402
from clearview import db as db_module  # noqa: E402
from clearview.db import get_session  # noqa: E402
from clearview.email import get_mailer  # noqa: E402
from clearview.errors import EmailDeliveryError  # noqa: E402
from clearview.storage import get_object_store  # noqa: E402

ADMIN_HEADERS = {"X-Access-Token": os.environ["ADMIN_ACCESS_TOKEN"]}


class FakeMailer:
    def __init__(self):
        self.messages: List[dict] = []
        self.fail = False

    def send(self, to, subject, html, text, attachments=None, sender_name=None, reply_to=None):
        if self.fail:
            raise EmailDeliveryError("Failed to send email: smtp unavailable")
        self.messages.append(
            {
                "to": [to] if isinstance(to, str) else list(to),
                "subject": subject,
                "html": html,
                "text": text,
                "sender_name": sender_name,
                "reply_to": reply_to,
            }
        )


class FakeObjectStore:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    def upload_public(self, key: str, data: bytes, content_type: str):
        self.objects[key] = bytes(data)
        return f"https://files.test/signatures/{key}"


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def client(test_engine, setup_db, mailer, object_store):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_object_store] = lambda: object_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def login(client):
    """Mint a session for ``email`` and return ``(user, headers)``."""

    def _login(email: str, full_name: str = None):
        body = {"email": email}
        if full_name:
            body["fullName"] = full_name
        response = client.post("/api/auth/sessions", json=body, headers=ADMIN_HEADERS)
        assert response.status_code == 200, response.text
        data = response.json()
        return data["user"], {"Authorization": f"Bearer {data['token']}"}

    return _login
