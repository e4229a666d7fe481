"""
tests/test_admin.py — Back-office endpoints: stats, products, orders, uploads
"""
from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image
from sqlalchemy import insert, select, update

from storefront.db import detalle_pedido, pedido, producto


@pytest.fixture
def admin(client, admin_token):
    client.cookies.set("token", admin_token)
    return client


@pytest.fixture
def orders(engine, seeded):
    """One pending order (2 x Martillo) and one shipped order (1 x Taladro)."""
    with engine.begin() as conn:
        pendiente_id = conn.execute(insert(pedido).values(
            numero_pedido="PED-0001", usuario_id=seeded["customer_id"], estado="pendiente",
            subtotal=600.0, total=600.0,
        )).inserted_primary_key[0]
        conn.execute(insert(detalle_pedido).values(
            pedido_id=pendiente_id, producto_id=seeded["martillo_id"], nombre_producto="Martillo",
            sku="MAR-001", cantidad=2, precio_unitario=300.0, subtotal=600.0,
        ))
        enviado_id = conn.execute(insert(pedido).values(
            numero_pedido="PED-0002", usuario_id=seeded["customer_id"], estado="enviado",
            subtotal=1500.0, total=1500.0,
        )).inserted_primary_key[0]
        conn.execute(insert(detalle_pedido).values(
            pedido_id=enviado_id, producto_id=seeded["taladro_id"], nombre_producto="Taladro Percutor",
            sku="TAL-001", cantidad=1, precio_unitario=1500.0, subtotal=1500.0,
        ))
    return {"pendiente": pendiente_id, "enviado": enviado_id}


def _stock(engine, producto_id):
    with engine.connect() as conn:
        return conn.execute(select(producto.c.stock).where(producto.c.id == producto_id)).scalar()


NEW_PRODUCT = {
    "nombre": "Llave Inglesa",
    "descripcion": "Llave ajustable de acero forjado",
    "precio": 800,
    "stock": 5,
    "sku": "LLA-001",
}


# ── stats (role matrix) ───────────────────────────────────────────────────────

def test_stats_requires_authentication(client, seeded):
    assert client.get("/api/admin/stats").status_code == 401


def test_stats_forbidden_for_customer(client, customer_token):
    client.cookies.set("token", customer_token)
    assert client.get("/api/admin/stats").status_code == 403


def test_stats_for_admin(admin, orders):
    resp = admin.get("/api/admin/stats")
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["total_productos"] == 3
    assert stats["productos_sin_stock"] == 1
    assert stats["productos_stock_bajo"] == 1
    assert stats["total_pedidos"] == 2
    assert stats["pedidos_pendientes"] == 1
    assert stats["ingresos_total"] == 2100.0
    assert stats["total_clientes"] == 1
    assert stats["total_admins"] == 1
    assert stats["top_productos"][0]["unidades_vendidas"] == 2
    assert stats["last_updated"].endswith("Z")


# ── products ──────────────────────────────────────────────────────────────────

def test_create_product_generates_slug_and_audits(admin, seeded, log_entries):
    resp = admin.post("/api/admin/productos", json={**NEW_PRODUCT, "categoria_id": seeded["categoria_id"]})
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["slug"] == "llave-inglesa"
    assert data["activo"] is True

    (entry,) = log_entries("AUDIT")
    assert entry["event"] == "DATA_MODIFICATION"
    assert entry["data"] == {"entity": "producto", "action": "CREATE", "entityId": data["id"]}


def test_create_product_with_taken_name_gets_suffixed_slug(admin, seeded):
    body = {**NEW_PRODUCT, "nombre": "Martillo", "categoria_id": seeded["categoria_id"]}
    assert admin.post("/api/admin/productos", json=body).json()["data"]["slug"] == "martillo-2"


def test_duplicate_sku_is_rejected(admin, seeded):
    body = {**NEW_PRODUCT, "sku": "TAL-001", "categoria_id": seeded["categoria_id"]}
    resp = admin.post("/api/admin/productos", json=body)
    assert resp.status_code == 400
    assert resp.json()["message"] == "El SKU ya existe"


def test_relative_image_url_is_accepted_and_bad_scheme_rejected(admin, seeded):
    body = {**NEW_PRODUCT, "categoria_id": seeded["categoria_id"], "imagen_url": "/uploads/productos/a.png"}
    assert admin.post("/api/admin/productos", json=body).status_code == 201

    body = {**NEW_PRODUCT, "sku": "LLA-002", "categoria_id": seeded["categoria_id"], "imagen_url": "ftp://x/a.png"}
    resp = admin.post("/api/admin/productos", json=body)
    assert resp.status_code == 400
    assert "imagen_url" in resp.json()["errors"]


def test_update_product(admin, seeded):
    body = {
        **NEW_PRODUCT,
        "nombre": "Taladro Inalámbrico",
        "sku": "TAL-001",
        "categoria_id": seeded["categoria_id"],
        "destacado": False,
        "activo": True,
    }
    resp = admin.put(f"/api/admin/productos/{seeded['taladro_id']}", json=body)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Producto actualizado correctamente"
    assert resp.json()["data"]["slug"] == "taladro-inalambrico"

    body["sku"] = "MAR-001"
    resp = admin.put(f"/api/admin/productos/{seeded['taladro_id']}", json=body)
    assert resp.status_code == 400
    assert resp.json()["message"] == "El SKU ya existe en otro producto"


def test_update_unknown_product_is_404(admin, seeded):
    body = {**NEW_PRODUCT, "categoria_id": seeded["categoria_id"], "destacado": False, "activo": True}
    assert admin.put("/api/admin/productos/9999", json=body).status_code == 404


def test_delete_product_with_orders_deactivates(admin, engine, orders, seeded):
    resp = admin.delete(f"/api/admin/productos/{seeded['martillo_id']}")
    assert resp.status_code == 200
    assert resp.json()["desactivado"] is True
    assert admin.get(f"/api/admin/productos/{seeded['martillo_id']}").json()["data"]["activo"] is False


def test_delete_product_without_orders_removes_it(admin, seeded):
    resp = admin.delete(f"/api/admin/productos/{seeded['sierra_id']}")
    assert resp.status_code == 200
    assert "desactivado" not in resp.json()
    assert admin.get(f"/api/admin/productos/{seeded['sierra_id']}").status_code == 404


def test_admin_product_list_includes_inactive(admin, engine, seeded):
    with engine.begin() as conn:
        conn.execute(update(producto).where(producto.c.id == seeded["sierra_id"]).values(activo=False))
    body = admin.get("/api/admin/productos").json()
    assert body["total"] == 3
    assert admin.get("/api/productos").json()["meta"]["count"] == 2


# ── orders ────────────────────────────────────────────────────────────────────

def test_order_detail(admin, orders):
    resp = admin.get(f"/api/admin/pedidos/{orders['pendiente']}")
    assert resp.status_code == 200
    body = resp.json()
    assert body["numero_pedido"] == "PED-0001"
    assert body["usuario_email"] == "cliente@tienda.com"
    assert body["items"][0]["slug"] == "martillo"
    assert set(body["direccion"]) >= {"ciudad", "codigo_postal"}


def test_status_change_stamps_first_transition_only(admin, orders):
    url = f"/api/admin/pedidos/{orders['pendiente']}"
    resp = admin.put(url, json={"estado": "procesando"})
    assert resp.status_code == 200
    assert resp.json()["pedido"]["estado"] == "procesando"
    first_stamp = admin.get(url).json()["fecha_procesado"]
    assert first_stamp is not None

    admin.put(url, json={"estado": "pendiente"})
    admin.put(url, json={"estado": "procesando"})
    assert admin.get(url).json()["fecha_procesado"] == first_stamp


def test_unknown_status_is_rejected(admin, orders):
    resp = admin.put(f"/api/admin/pedidos/{orders['pendiente']}", json={"estado": "perdido"})
    assert resp.status_code == 400


def test_delete_pending_order_restores_stock(admin, engine, orders, seeded):
    resp = admin.delete(f"/api/admin/pedidos/{orders['pendiente']}")
    assert resp.status_code == 200
    assert _stock(engine, seeded["martillo_id"]) == 3
    assert admin.get(f"/api/admin/pedidos/{orders['pendiente']}").status_code == 404


def test_shipped_order_cannot_be_deleted(admin, engine, orders, seeded):
    resp = admin.delete(f"/api/admin/pedidos/{orders['enviado']}")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Solo se pueden eliminar pedidos pendientes o cancelados"
    assert _stock(engine, seeded["taladro_id"]) == 10


# ── uploads ───────────────────────────────────────────────────────────────────

def _image_bytes(fmt: str) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


def test_upload_png(admin, settings, log_entries):
    resp = admin.post(
        "/api/admin/upload/producto",
        files={"file": ("foto.png", _image_bytes("PNG"), "image/png")},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Imagen subida exitosamente"
    assert body["filename"].startswith("producto-") and body["filename"].endswith(".png")
    assert body["url"] == f"/uploads/productos/{body['filename']}"
    assert Path(settings.upload_dir, body["filename"]).exists()
    assert [e["event"] for e in log_entries("AUDIT")] == ["FILE_UPLOAD"]


def test_upload_type_comes_from_content_not_name(admin, log_entries):
    resp = admin.post(
        "/api/admin/upload/producto",
        files={"file": ("foto.png", b"definitely not an image", "image/png")},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "No se pudo detectar el tipo de archivo"
    assert log_entries()[0]["data"]["type"] == "UNKNOWN_FILE_TYPE"


def test_upload_rejects_disallowed_image_format(admin):
    resp = admin.post(
        "/api/admin/upload/producto",
        files={"file": ("anim.gif", _image_bytes("GIF"), "image/gif")},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Tipo de archivo no permitido"


def test_upload_without_file(admin):
    resp = admin.post("/api/admin/upload/producto", files={"otro": ("x.txt", b"x", "text/plain")})
    assert resp.status_code == 400
    assert resp.json()["message"] == "No se envió ningún archivo"
