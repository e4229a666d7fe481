"""
storefront/services/users.py — Accounts: authentication, self-registration, admin CRUD
Password hashes never leave this module.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import status
from loguru import logger
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from storefront.core.auth import hash_password, verify_password
from storefront.core.errors import ApiError, ForbiddenError, NotFoundError
from storefront.core.logging import SecurityLogger
from storefront.db import db_now, row_to_dict, usuario
from storefront.models import Role

BAD_CREDENTIALS = "Email o contraseña incorrectos"

# every column except the password hash
PUBLIC_COLUMNS = (
    usuario.c.id,
    usuario.c.nombre,
    usuario.c.apellido,
    usuario.c.email,
    usuario.c.telefono,
    usuario.c.rol,
    usuario.c.activo,
    usuario.c.email_verificado,
    usuario.c.fecha_registro,
    usuario.c.ultima_sesion,
)


def _fetch_public(conn: Connection, usuario_id: int) -> Optional[dict[str, Any]]:
    row = conn.execute(select(*PUBLIC_COLUMNS).where(usuario.c.id == usuario_id)).mappings().first()
    return row_to_dict(row)


def _email_taken(conn: Connection, email: str) -> bool:
    return conn.execute(select(usuario.c.id).where(usuario.c.email == email)).first() is not None


# ──────────────────────────────────────────────────────────────────────────────
# Authentication
# ──────────────────────────────────────────────────────────────────────────────

def authenticate(
    engine: Engine,
    email: str,
    password: str,
    sec_log: SecurityLogger,
    ip: str,
    user_agent: Optional[str] = None,
) -> dict[str, Any]:
    """
    Check credentials and stamp ultima_sesion.

    The password is verified before the account status so a disabled
    account is only revealed to someone who knows its password.
    """
    with engine.begin() as conn:
        row = conn.execute(
            select(*PUBLIC_COLUMNS, usuario.c.password).where(usuario.c.email == email)
        ).mappings().first()

        if row is None or not row["password"]:
            sec_log.login_failure(email, ip, "Usuario no encontrado", user_agent)
            raise ApiError(BAD_CREDENTIALS, status.HTTP_401_UNAUTHORIZED)

        if not verify_password(password, row["password"]):
            sec_log.login_failure(email, ip, "Contraseña incorrecta", user_agent)
            raise ApiError(BAD_CREDENTIALS, status.HTTP_401_UNAUTHORIZED)

        if not row["activo"]:
            sec_log.login_failure(email, ip, "Cuenta deshabilitada", user_agent)
            raise ForbiddenError("Tu cuenta está deshabilitada. Contactá soporte.")

        conn.execute(update(usuario).where(usuario.c.id == row["id"]).values(ultima_sesion=db_now()))

    account = row_to_dict(row)
    account.pop("password")
    sec_log.login_success(account["id"], email, ip, user_agent)
    return account


def register(engine: Engine, data: dict[str, Any], sec_log: SecurityLogger, ip: str) -> dict[str, Any]:
    """Self-service signup; always creates an active customer account."""
    email = data["email"]
    with engine.begin() as conn:
        if _email_taken(conn, email):
            sec_log.suspicious_activity(
                "DUPLICATE_REGISTRATION", ip, "/api/auth/registro", {"email": email},
            )
            raise ApiError("El email ya está registrado")

        new_id = conn.execute(
            insert(usuario).values(
                nombre=data["nombre"],
                apellido=data["apellido"],
                email=email,
                telefono=(data.get("telefono") or "").strip() or None,
                password=hash_password(data["password"]),
                rol=Role.CUSTOMER.value,
                activo=True,
                email_verificado=False,
            )
        ).inserted_primary_key[0]

    sec_log.register(new_id, email, ip)
    logger.info(f"Customer registered: {data['nombre']} {data['apellido']} ({email})")
    return {
        "id": new_id,
        "nombre": data["nombre"],
        "apellido": data["apellido"],
        "email": email,
        "rol": Role.CUSTOMER.value,
    }


def get_active_user(engine: Engine, usuario_id: int) -> dict[str, Any]:
    with engine.connect() as conn:
        row = conn.execute(
            select(*PUBLIC_COLUMNS).where(usuario.c.id == usuario_id, usuario.c.activo.is_(True))
        ).mappings().first()
    if row is None:
        raise NotFoundError("Usuario no encontrado o inactivo")
    return row_to_dict(row)


# ──────────────────────────────────────────────────────────────────────────────
# Admin CRUD
# ──────────────────────────────────────────────────────────────────────────────

def list_users(engine: Engine) -> list[dict[str, Any]]:
    query = select(*PUBLIC_COLUMNS).order_by(usuario.c.fecha_registro.desc(), usuario.c.id.desc())
    with engine.connect() as conn:
        return [row_to_dict(r) for r in conn.execute(query).mappings().all()]


def create_user(engine: Engine, data: dict[str, Any]) -> dict[str, Any]:
    with engine.begin() as conn:
        if _email_taken(conn, data["email"]):
            raise ApiError("Email ya registrado")
        new_id = conn.execute(
            insert(usuario).values(
                nombre=data["nombre"],
                apellido=data["apellido"],
                email=data["email"],
                telefono=data["telefono"],
                password=hash_password(data["password"]),
                rol=Role(data["rol"]).value,
                activo=True,
                email_verificado=False,
            )
        ).inserted_primary_key[0]
        created = _fetch_public(conn, new_id)
    logger.info(f"User created: {created['email']} ({created['rol']})")
    return created


def update_user(engine: Engine, usuario_id: int, data: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {
        "nombre": data["nombre"],
        "apellido": data["apellido"],
        "email": data["email"],
        "telefono": data.get("telefono") or None,
        "rol": Role(data["rol"]).value,
    }
    password = data.get("password")
    if password and password.strip():
        values["password"] = hash_password(password)

    try:
        with engine.begin() as conn:
            result = conn.execute(update(usuario).where(usuario.c.id == usuario_id).values(**values))
            if result.rowcount == 0:
                raise NotFoundError("Usuario no encontrado")
            updated = _fetch_public(conn, usuario_id)
    except IntegrityError as exc:
        raise ApiError("Email ya registrado") from exc

    logger.info(f"User updated: {updated['email']} ({updated['rol']})")
    return updated


def delete_user(engine: Engine, usuario_id: int) -> None:
    try:
        with engine.begin() as conn:
            result = conn.execute(delete(usuario).where(usuario.c.id == usuario_id))
            if result.rowcount == 0:
                raise NotFoundError("Usuario no encontrado")
    except IntegrityError as exc:
        # orders keep a foreign key to their customer
        raise ApiError("No se puede eliminar un usuario con pedidos asociados") from exc
    logger.info(f"User {usuario_id} deleted.")
