"""
tests/conftest.py — Shared pytest fixtures
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert

from storefront.config import Settings
from storefront.core.auth import hash_password, sign_jwt
from storefront.db import categoria, create_db_engine, init_db, producto, usuario
from storefront.main import create_app
from storefront.models import IdentityClaim, Role

TEST_SECRET = "test-secret-for-the-storefront-suite"
ADMIN_EMAIL = "admin@tienda.com"
CUSTOMER_EMAIL = "cliente@tienda.com"
PASSWORD = "secreto123"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="testing",
        database_url="sqlite://",
        jwt_secret=TEST_SECRET,
        logs_dir=str(tmp_path / "logs"),
        upload_dir=str(tmp_path / "uploads"),
        rate_limit_sweep_seconds=3600,
    )


@pytest.fixture
def engine(settings: Settings):
    engine = create_db_engine(settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def seeded(engine) -> dict[str, int]:
    """Admin, customer, one category and three products (stock 10 / 1 / 0)."""
    hashed = hash_password(PASSWORD)
    with engine.begin() as conn:
        admin_id = conn.execute(insert(usuario).values(
            nombre="Ana", apellido="Admin", email=ADMIN_EMAIL, password=hashed, rol="admin",
        )).inserted_primary_key[0]
        customer_id = conn.execute(insert(usuario).values(
            nombre="Carlos", apellido="Cliente", email=CUSTOMER_EMAIL, password=hashed, rol="cliente",
        )).inserted_primary_key[0]
        categoria_id = conn.execute(insert(categoria).values(
            nombre="Herramientas", slug="herramientas",
        )).inserted_primary_key[0]
        taladro_id = conn.execute(insert(producto).values(
            nombre="Taladro Percutor", slug="taladro-percutor", precio=1500.0, precio_anterior=2000.0,
            stock=10, categoria_id=categoria_id, sku="TAL-001", destacado=True, ventas=7,
        )).inserted_primary_key[0]
        martillo_id = conn.execute(insert(producto).values(
            nombre="Martillo", slug="martillo", precio=300.0,
            stock=1, categoria_id=categoria_id, sku="MAR-001", ventas=2,
        )).inserted_primary_key[0]
        sierra_id = conn.execute(insert(producto).values(
            nombre="Sierra Circular", slug="sierra-circular", precio=4200.0,
            stock=0, categoria_id=categoria_id, sku="SIE-001",
        )).inserted_primary_key[0]
    return {
        "admin_id": admin_id,
        "customer_id": customer_id,
        "categoria_id": categoria_id,
        "taladro_id": taladro_id,
        "martillo_id": martillo_id,
        "sierra_id": sierra_id,
    }


@pytest.fixture
def app(settings: Settings, engine):
    return create_app(settings, engine)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_token(settings: Settings, seeded: dict[str, int]) -> str:
    return sign_jwt(IdentityClaim(id=seeded["admin_id"], email=ADMIN_EMAIL, role=Role.ADMIN), settings)


@pytest.fixture
def customer_token(settings: Settings, seeded: dict[str, int]) -> str:
    return sign_jwt(IdentityClaim(id=seeded["customer_id"], email=CUSTOMER_EMAIL, role=Role.CUSTOMER), settings)


def read_log(settings: Settings, level: str = "SECURITY") -> list[dict[str, Any]]:
    """All JSON entries written so far to the {level}-*.log files."""
    logs_dir = Path(settings.logs_dir)
    entries: list[dict[str, Any]] = []
    for path in sorted(logs_dir.glob(f"{level.lower()}-*.log")):
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                entries.append(json.loads(line))
    return entries


@pytest.fixture
def log_entries(settings: Settings):
    """Callable returning the entries of one log level: log_entries("AUDIT")."""
    def _read(level: str = "SECURITY") -> list[dict[str, Any]]:
        return read_log(settings, level)
    return _read
