"""
tests/test_edge.py — Edge security middleware (URL screen, CSRF, upload size, role gate)
"""
from __future__ import annotations

from starlette.requests import Request

from storefront.core.edge import check_file_upload, is_protected_path, is_public_path
from storefront.core.logging import SecurityLogger
from storefront.core.security_headers import SECURITY_HEADERS


def test_every_response_carries_security_headers(client):
    resp = client.get("/api/ping")
    assert resp.status_code == 200
    for name, value in SECURITY_HEADERS.items():
        assert resp.headers[name] == value
    assert resp.headers["X-Response-Time"].endswith("ms")


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/no-existe")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert "X-Content-Type-Options" in resp.headers


# ── suspicious URL screen ─────────────────────────────────────────────────────

def test_path_traversal_in_query_is_rejected(client, log_entries):
    resp = client.get("/api/productos", params={"busqueda": "../../etc/passwd"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Solicitud rechazada"
    (entry,) = log_entries()
    assert entry["data"]["type"] == "SUSPICIOUS_URL_PATTERN"


def test_sql_injection_in_query_is_rejected(client, log_entries):
    resp = client.get("/api/productos", params={"busqueda": "' OR 1=1"})
    assert resp.status_code == 400
    assert [e["event"] for e in log_entries()] == ["SQL_INJECTION_ATTEMPT"]


def test_xss_in_query_is_rejected(client, log_entries):
    resp = client.get("/api/productos", params={"busqueda": "onmouseover=alert(1)"})
    assert resp.status_code == 400
    assert [e["event"] for e in log_entries()] == ["XSS_ATTEMPT"]


# ── CSRF ──────────────────────────────────────────────────────────────────────

CONSULTA = {"nombre": "Laura", "email": "laura@tienda.com", "mensaje": "Hacen envíos a Córdoba?"}


def test_foreign_origin_is_rejected(client, log_entries):
    resp = client.post("/api/consultas", json=CONSULTA, headers={"Origin": "https://evil.test"})
    assert resp.status_code == 403
    assert resp.json()["message"] == "Origen no permitido"
    assert log_entries()[0]["data"]["type"] == "CSRF_ORIGIN_MISMATCH"


def test_origin_prefix_lookalike_is_rejected(client):
    resp = client.post("/api/consultas", json=CONSULTA, headers={"Origin": "http://localhost:3000.evil.test"})
    assert resp.status_code == 403


def test_allowed_origin_passes(client):
    resp = client.post("/api/consultas", json=CONSULTA, headers={"Origin": "http://localhost:3000"})
    assert resp.status_code == 201


def test_request_without_origin_is_not_checked(client):
    assert client.post("/api/consultas", json=CONSULTA).status_code == 201


# ── upload pre-screen ─────────────────────────────────────────────────────────

def _upload_request(length: int) -> Request:
    return Request({
        "type": "http",
        "method": "POST",
        "path": "/api/admin/upload/producto",
        "query_string": b"",
        "headers": [
            (b"content-type", b"multipart/form-data; boundary=x"),
            (b"content-length", str(length).encode()),
        ],
        "client": ("10.0.0.1", 5000),
        "server": ("testserver", 80),
        "scheme": "http",
    })


def test_oversized_multipart_is_rejected_from_headers(settings, tmp_path):
    sec_log = SecurityLogger(tmp_path, environment="testing")
    rejection = check_file_upload(_upload_request(settings.max_multipart_bytes + 1), settings, sec_log)
    assert rejection is not None
    assert rejection.status_code == 413
    assert check_file_upload(_upload_request(1024), settings, sec_log) is None


# ── authorization gate ────────────────────────────────────────────────────────

def test_path_classification():
    assert is_protected_path("/api/admin/stats")
    assert is_protected_path("/cuenta/pedidos")
    assert not is_protected_path("/api/productos")
    assert is_public_path("/api/productos/taladro")


def test_customer_blocked_from_admin_api(client, customer_token, log_entries):
    client.cookies.set("token", customer_token)
    resp = client.get("/api/admin/productos")
    assert resp.status_code == 403
    assert resp.json()["message"] == "No autorizado"
    (entry,) = log_entries()
    assert entry["event"] == "UNAUTHORIZED_ACCESS"
    assert entry["userEmail"] == "cliente@tienda.com"


def test_admin_blocked_from_customer_api(client, admin_token):
    client.cookies.set("token", admin_token)
    assert client.get("/api/carrito").status_code == 403


def test_api_without_token_reaches_route_for_401(client, seeded):
    resp = client.get("/api/carrito")
    assert resp.status_code == 401
    assert resp.json()["message"] == "No autenticado"


def test_invalid_token_on_protected_api_clears_cookie(client, seeded):
    client.cookies.set("token", "garbage")
    resp = client.get("/api/carrito")
    assert resp.status_code == 401
    assert "token=" in resp.headers.get("set-cookie", "")


def test_invalid_token_on_public_api_is_ignored(client, seeded):
    client.cookies.set("token", "garbage")
    resp = client.get("/api/productos")
    assert resp.status_code == 200
    assert "set-cookie" not in resp.headers


def test_protected_page_without_token_redirects_to_login(client):
    resp = client.get("/cuenta/pedidos", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/login?redirect=/cuenta/pedidos"


def test_protected_page_with_invalid_token_redirects_and_clears(client):
    client.cookies.set("token", "garbage")
    resp = client.get("/panel/admin", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/login"
    assert "token=" in resp.headers["set-cookie"]


def test_customer_on_admin_page_goes_to_unauthorized(client, customer_token):
    client.cookies.set("token", customer_token)
    resp = client.get("/panel/admin/productos", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "/unauthorized"


def test_plain_search_terms_pass_the_url_screen(client, seeded):
    assert client.get("/api/productos", params={"busqueda": "taladro percutor"}).status_code == 200


def test_query_is_screened_after_plus_decoding(client, log_entries):
    # "+" decodes to a space, so an SQL keyword followed by a word is rejected
    resp = client.get("/api/productos?busqueda=update+kit")
    assert resp.status_code == 400
    assert [e["event"] for e in log_entries()] == ["SQL_INJECTION_ATTEMPT"]
