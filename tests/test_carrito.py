"""
tests/test_carrito.py — Customer cart endpoints
"""
from __future__ import annotations

import pytest
from sqlalchemy import select, update

from storefront.db import carrito, producto


@pytest.fixture
def customer(client, customer_token):
    client.cookies.set("token", customer_token)
    return client


def _cart_quantity(engine, usuario_id, producto_id):
    with engine.connect() as conn:
        return conn.execute(
            select(carrito.c.cantidad).where(
                carrito.c.usuario_id == usuario_id, carrito.c.producto_id == producto_id,
            )
        ).scalar()


def test_add_within_stock_upserts(customer, engine, seeded):
    resp = customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 3})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Producto agregado al carrito", "cantidad_total": 3}

    resp = customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 2})
    assert resp.json()["cantidad_total"] == 5
    assert _cart_quantity(engine, seeded["customer_id"], seeded["taladro_id"]) == 5


def test_add_beyond_stock_reports_available_units(customer, engine, seeded):
    resp = customer.post("/api/carrito", json={"producto_id": seeded["martillo_id"], "cantidad": 3})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Solo hay 1 unidades disponibles"
    assert _cart_quantity(engine, seeded["customer_id"], seeded["martillo_id"]) is None


def test_existing_quantity_counts_against_stock(customer, seeded):
    customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 8})
    resp = customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 3})
    assert resp.status_code == 400
    assert "10" in resp.json()["message"]


def test_unknown_product_is_404(customer):
    resp = customer.post("/api/carrito", json={"producto_id": 9999, "cantidad": 1})
    assert resp.status_code == 404


def test_inactive_product_is_400(customer, engine, seeded):
    with engine.begin() as conn:
        conn.execute(update(producto).where(producto.c.id == seeded["taladro_id"]).values(activo=False))
    resp = customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 1})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Producto no disponible"


def test_schema_rejects_bad_quantity(customer, seeded):
    resp = customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 0})
    assert resp.status_code == 400
    assert "cantidad" in resp.json()["errors"]


def test_list_update_and_remove(customer, seeded):
    taladro = seeded["taladro_id"]
    customer.post("/api/carrito", json={"producto_id": taladro, "cantidad": 1})

    items = customer.get("/api/carrito").json()["items"]
    assert len(items) == 1
    assert items[0]["producto"]["slug"] == "taladro-percutor"
    assert items[0]["cantidad"] == 1

    resp = customer.put(f"/api/carrito/{taladro}", json={"cantidad": 4})
    assert resp.status_code == 200
    assert customer.get("/api/carrito").json()["items"][0]["cantidad"] == 4

    assert customer.put(f"/api/carrito/{taladro}", json={"cantidad": 11}).status_code == 400

    assert customer.delete(f"/api/carrito/{taladro}").status_code == 200
    assert customer.delete(f"/api/carrito/{taladro}").status_code == 404
    assert customer.get("/api/carrito").json()["items"] == []


def test_invalid_path_id_is_400(customer):
    resp = customer.delete("/api/carrito/abc")
    assert resp.status_code == 400
    assert resp.json()["message"] == "ID inválido"


def test_clear_cart(customer, seeded):
    customer.post("/api/carrito", json={"producto_id": seeded["taladro_id"], "cantidad": 1})
    customer.post("/api/carrito", json={"producto_id": seeded["martillo_id"], "cantidad": 1})
    assert customer.delete("/api/carrito").json() == {"message": "Carrito vaciado"}
    assert customer.get("/api/carrito").json()["items"] == []
