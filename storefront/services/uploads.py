"""
storefront/services/uploads.py — Product image uploads
The file type is detected from the bytes themselves (Pillow), never from the
client-supplied name or Content-Type.
"""
from __future__ import annotations

import io
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from PIL import Image, UnidentifiedImageError

from storefront.config import Settings
from storefront.core.errors import ApiError
from storefront.core.logging import SecurityLogger
from storefront.core.sanitize import sanitize_filename
from storefront.models import IdentityClaim

ALLOWED_FORMATS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


def detect_image_format(data: bytes) -> Optional[str]:
    """Return Pillow's format name for `data`, or None if it is not an image."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            return img.format
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None


def build_filename(ext: str) -> str:
    suffix = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    return sanitize_filename(f"producto-{suffix}.{ext}")


def save_product_image(
    data: bytes,
    original_name: str,
    user: IdentityClaim,
    ip: str,
    settings: Settings,
    sec_log: SecurityLogger,
) -> dict[str, Any]:
    endpoint = "/api/admin/upload/producto"

    detected = detect_image_format(data)
    if detected is None:
        sec_log.suspicious_activity(
            "UNKNOWN_FILE_TYPE", ip, endpoint, {"filename": original_name[:100]},
        )
        raise ApiError("No se pudo detectar el tipo de archivo")

    ext = ALLOWED_FORMATS.get(detected)
    if ext is None:
        sec_log.suspicious_activity(
            "DISALLOWED_FILE_TYPE", ip, endpoint,
            {"filename": original_name[:100], "format": detected},
        )
        raise ApiError("Tipo de archivo no permitido")

    if len(data) > settings.max_upload_bytes:
        max_mb = settings.max_upload_bytes // (1024 * 1024)
        raise ApiError(f"El archivo es demasiado grande (máx {max_mb}MB)")

    filename = build_filename(ext)
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    (upload_dir / filename).write_bytes(data)

    sec_log.file_upload(user.id, user.email, original_name, len(data), ip)
    logger.info(f"Image uploaded: {filename} by {user.email}")

    return {
        "message": "Imagen subida exitosamente",
        "url": f"{settings.upload_public_prefix.rstrip('/')}/{filename}",
        "filename": filename,
    }
