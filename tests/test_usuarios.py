"""
tests/test_usuarios.py — Account administration and the public inquiry form
"""
from __future__ import annotations

import pytest
from sqlalchemy import insert, select

from storefront.db import consultas, pedido

NEW_USER = {
    "nombre": "Pedro",
    "apellido": "Vendedor",
    "email": "pedro@tienda.com",
    "telefono": "1155556666",
    "password": "clave123",
    "rol": "admin",
}


@pytest.fixture
def admin(client, admin_token):
    client.cookies.set("token", admin_token)
    return client


def test_customer_cannot_list_users(client, customer_token):
    client.cookies.set("token", customer_token)
    assert client.get("/api/usuarios").status_code == 403


def test_list_users_never_exposes_passwords(admin):
    users = admin.get("/api/usuarios").json()
    assert {u["email"] for u in users} == {"admin@tienda.com", "cliente@tienda.com"}
    assert all("password" not in u for u in users)


def test_create_user_and_audit(admin, log_entries):
    resp = admin.post("/api/usuarios", json=NEW_USER)
    assert resp.status_code == 201
    created = resp.json()
    assert created["rol"] == "admin"
    assert "password" not in created

    (entry,) = log_entries("AUDIT")
    assert entry["data"] == {"entity": "usuario", "action": "CREATE", "entityId": created["id"]}

    login = admin.post("/api/auth/login", json={"email": NEW_USER["email"], "password": NEW_USER["password"]})
    assert login.status_code == 200


def test_create_user_with_taken_email(admin):
    resp = admin.post("/api/usuarios", json={**NEW_USER, "email": "cliente@tienda.com"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Email ya registrado"


def test_update_user_keeps_password_when_omitted(admin, seeded):
    body = {k: v for k, v in NEW_USER.items() if k != "password"}
    body.update(email="carlos@tienda.com", rol="cliente")
    resp = admin.put(f"/api/usuarios/{seeded['customer_id']}", json=body)
    assert resp.status_code == 200
    assert resp.json()["email"] == "carlos@tienda.com"

    login = admin.post("/api/auth/login", json={"email": "carlos@tienda.com", "password": "secreto123"})
    assert login.status_code == 200


def test_update_user_email_collision(admin, seeded):
    body = {**NEW_USER, "email": "admin@tienda.com", "rol": "cliente"}
    resp = admin.put(f"/api/usuarios/{seeded['customer_id']}", json=body)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Email ya registrado"


def test_update_unknown_user_is_404(admin):
    assert admin.put("/api/usuarios/9999", json=NEW_USER).status_code == 404


def test_delete_user(admin, seeded):
    assert admin.delete(f"/api/usuarios/{seeded['customer_id']}").json() == {
        "message": "Usuario eliminado exitosamente",
    }
    assert admin.delete(f"/api/usuarios/{seeded['customer_id']}").status_code == 404


def test_user_with_orders_cannot_be_deleted(admin, engine, seeded):
    with engine.begin() as conn:
        conn.execute(insert(pedido).values(
            numero_pedido="PED-0100", usuario_id=seeded["customer_id"], estado="entregado", total=10.0,
        ))
    resp = admin.delete(f"/api/usuarios/{seeded['customer_id']}")
    assert resp.status_code == 400
    assert resp.json()["message"] == "No se puede eliminar un usuario con pedidos asociados"


# ── inquiries ─────────────────────────────────────────────────────────────────

def test_inquiry_is_stored(client, engine):
    body = {"nombre": "Laura", "email": "Laura@Tienda.com", "mensaje": "  ¿Tienen factura A?  "}
    resp = client.post("/api/consultas", json=body)
    assert resp.status_code == 201
    consulta_id = resp.json()["data"]["id"]

    with engine.connect() as conn:
        row = conn.execute(select(consultas).where(consultas.c.id == consulta_id)).mappings().one()
    assert row["email"] == "laura@tienda.com"
    assert row["mensaje"] == "¿Tienen factura A?"
    assert row["leida"] is False


def test_inquiry_requires_message(client):
    resp = client.post("/api/consultas", json={"nombre": "Laura", "email": "laura@tienda.com", "mensaje": ""})
    assert resp.status_code == 400
    assert "mensaje" in resp.json()["errors"]
