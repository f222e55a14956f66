import os
import tempfile
from pathlib import Path
from typing import Dict

import pytest

_TMP_DIR = Path(tempfile.mkdtemp(prefix="tableside-tests-"))
_DB_PATH = _TMP_DIR / "orders.db"

# Settings are cached on first import, so the environment must be in place
# before anything from tableside is imported.
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["DATA_DIRECTORY"] = str(_TMP_DIR / "data")
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["TAX_RATE"] = "0.1"
os.environ["ENV_MODE"] = "development"

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from tableside.database import Base  # noqa: E402
from tableside.models import DiningTable, MenuItem  # noqa: E402
from tableside.security import Role, create_access_token  # noqa: E402


@pytest.fixture(scope="session")
def sync_engine():
    """
    Plain pysqlite engine on the same file the app uses, for schema resets
    and seeding outside the app's event loop.
    """
    engine = create_engine(f"sqlite:///{_DB_PATH}")
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def _reset_db(sync_engine):
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield


@pytest.fixture(scope="session")
def app():
    from tableside.main import app as tableside_app

    return tableside_app


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def auth_headers(user_id: str, role: Role = Role.CUSTOMER) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


@pytest.fixture()
def customer_headers() -> Dict[str, str]:
    return auth_headers("cust-1")


@pytest.fixture()
def other_customer_headers() -> Dict[str, str]:
    return auth_headers("cust-2")


@pytest.fixture()
def staff_headers() -> Dict[str, str]:
    return auth_headers("staff-1", Role.STAFF)


@pytest.fixture()
def admin_headers() -> Dict[str, str]:
    return auth_headers("admin-1", Role.ADMIN)


@pytest.fixture()
def table(sync_engine) -> Dict[str, object]:
    with Session(sync_engine) as s:
        t = DiningTable(table_number=7, qr_slug="table-7", seats=4)
        s.add(t)
        s.commit()
        return {"id": t.id, "table_number": t.table_number, "qr_slug": t.qr_slug}


@pytest.fixture()
def menu(sync_engine) -> Dict[str, int]:
    with Session(sync_engine) as s:
        items = [
            MenuItem(name="Margherita", price=12.5, category="pizza"),
            MenuItem(name="Marinara", price=10.0, category="pizza", available=False),
            MenuItem(name="Tiramisu", price=6.0, category="dessert"),
        ]
        s.add_all(items)
        s.commit()
        return {item.name: item.id for item in items}


def order_body(**overrides) -> dict:
    body = {
        "items": [
            {"menu_item_id": 1, "name": "Margherita", "price": 12.5, "quantity": 2},
            {"menu_item_id": 3, "name": "Tiramisu", "price": 6.0, "quantity": 1, "note": "no cocoa"},
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture()
def place_order(client):
    """Place an order through the API and return its ``data`` payload."""

    def _place(headers: Dict[str, str] | None = None, **overrides) -> dict:
        resp = client.post("/api/orders", json=order_body(**overrides), headers=headers or {})
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _place
