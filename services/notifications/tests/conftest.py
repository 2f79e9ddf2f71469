import os
import tempfile

import pytest

# Must be set before repo.py builds its engine
_DB_PATH = os.path.join(tempfile.gettempdir(), "notifications-test.sqlite3")
os.environ["NOTIFICATIONS_DATABASE_URL"] = f"sqlite:///{_DB_PATH}"

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from repo import EventRecord, get_session  # noqa: E402


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        with get_session() as s:
            s.query(EventRecord).delete()
            s.commit()
        yield c


@pytest.fixture
def event_body():
    def make(event="ORDER_PLACED", **payload):
        body = {"order_id": "3f1c2a9e-0000-4000-8000-000000000001", "customer_name": "Asha", "amount": "376.12"}
        body.update(payload)
        return {"event": event, "payload": body}

    return make
