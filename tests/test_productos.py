"""
tests/test_productos.py — Public catalog listing and product detail
"""
from __future__ import annotations

import pytest
from sqlalchemy import update

from storefront.db import producto
from storefront.services.catalog import discount_info, stock_status


def _slugs(resp) -> list[str]:
    return [p["slug"] for p in resp.json()["data"]]


def test_listing_envelope(client, seeded):
    resp = client.get("/api/productos")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["meta"] == {"count": 3, "page": 1, "limit": 20, "filters_applied": {}}
    assert body["timestamp"].endswith("Z")
    assert body["data"][0]["categoria"]["slug"] == "herramientas"


def test_inactive_products_are_hidden(client, engine, seeded):
    with engine.begin() as conn:
        conn.execute(update(producto).where(producto.c.id == seeded["martillo_id"]).values(activo=False))
    assert "martillo" not in _slugs(client.get("/api/productos"))
    assert client.get("/api/productos/martillo").status_code == 404


@pytest.mark.parametrize(
    "params, expected",
    [
        ({"categoria": "herramientas"}, {"taladro-percutor", "martillo", "sierra-circular"}),
        ({"categoria": "jardin"}, set()),
        ({"busqueda": "Taladro"}, {"taladro-percutor"}),
        ({"busqueda": "mar-001"}, {"martillo"}),
        ({"precioMin": 400, "precioMax": 2000}, {"taladro-percutor"}),
        ({"soloStock": "true"}, {"taladro-percutor", "martillo"}),
        ({"destacado": "true"}, {"taladro-percutor"}),
    ],
)
def test_listing_filters(client, seeded, params, expected):
    assert set(_slugs(client.get("/api/productos", params=params))) == expected


def test_filters_are_echoed_in_meta(client, seeded):
    meta = client.get("/api/productos", params={"busqueda": "sierra", "soloStock": "true"}).json()["meta"]
    assert meta["filters_applied"] == {"busqueda": "sierra", "soloStock": True}


def test_sorting_and_pagination(client, seeded):
    resp = client.get("/api/productos", params={"ordenar": "precio_asc"})
    assert _slugs(resp) == ["martillo", "taladro-percutor", "sierra-circular"]

    resp = client.get("/api/productos", params={"ordenar": "popular", "limit": 1, "page": 2})
    assert _slugs(resp) == ["martillo"]
    assert resp.json()["meta"]["page"] == 2


@pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 500}, {"ordenar": "azar"}, {"precioMin": -1}])
def test_invalid_query_parameters(client, seeded, params):
    resp = client.get("/api/productos", params=params)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Parámetros de búsqueda inválidos"


# ── detail ────────────────────────────────────────────────────────────────────

def test_detail_adds_derived_fields_and_counts_views(client, seeded):
    first = client.get("/api/productos/taladro-percutor").json()["data"]
    assert first["estado_stock"] == "disponible"
    assert first["tiene_descuento"] is True
    assert first["porcentaje_descuento"] == 25
    assert "descripcion" in first["categoria"]
    assert first["vistas"] == 1

    second = client.get("/api/productos/taladro-percutor").json()["data"]
    assert second["vistas"] == 2


def test_detail_stock_states(client, seeded):
    assert client.get("/api/productos/martillo").json()["data"]["estado_stock"] == "stock_bajo"
    assert client.get("/api/productos/sierra-circular").json()["data"]["estado_stock"] == "sin_stock"


def test_unknown_slug_is_404(client, seeded):
    resp = client.get("/api/productos/no-existe")
    assert resp.status_code == 404
    assert resp.json()["slug"] == "no-existe"


@pytest.mark.parametrize("slug", ["Taladro_X", "admin", "doble--guion"])
def test_invalid_slug_is_400(client, seeded, slug):
    resp = client.get(f"/api/productos/{slug}")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Slug inválido"


def test_stock_status_thresholds():
    assert stock_status(0) == "sin_stock"
    assert stock_status(5) == "stock_bajo"
    assert stock_status(6) == "disponible"


def test_discount_info():
    assert discount_info(1500, 2000) == (True, 25)
    assert discount_info(1500, None) == (False, 0)
