"""
storefront/services/inquiries.py — Contact form submissions
"""
from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import insert
from sqlalchemy.engine import Engine

from storefront.db import consultas


def create_inquiry(engine: Engine, data: dict[str, Any]) -> int:
    with engine.begin() as conn:
        new_id = conn.execute(
            insert(consultas).values(
                nombre=data["nombre"],
                email=data["email"],
                mensaje=data["mensaje"],
            )
        ).inserted_primary_key[0]
    logger.info(f"Inquiry {new_id} received from {data['email']}")
    return new_id
