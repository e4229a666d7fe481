"""
storefront/utils/slugify.py — URL slugs for catalog entries
"cámara réflex 4K" → "camara-reflex-4k"; reserved route words get a
"producto-" prefix so a product can never shadow an application path.
"""
from __future__ import annotations

import re
import time
from typing import Callable, Optional

from loguru import logger

from storefront.core.logging import SecurityLogger
from storefront.core.sanitize import is_suspicious_input, strip_accents

MAX_INPUT_LENGTH = 200
MAX_SLUG_LENGTH = 100
MAX_UNIQUE_ATTEMPTS = 1000

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

RESERVED_SLUGS = frozenset({
    "admin", "api", "login", "logout", "registro", "cuenta",
    "carrito", "checkout", "unauthorized",
})
# also meaningless as identifiers in the storefront client
_RESERVED_LITERALS = frozenset({"null", "undefined", "true", "false"})


def generate_slug(name: str, security_logger: Optional[SecurityLogger] = None) -> str:
    if not isinstance(name, str) or not name.strip():
        logger.warning("generate_slug: empty or invalid input")
        return ""

    if len(name) > MAX_INPUT_LENGTH:
        logger.warning(f"generate_slug: input too long ({len(name)} chars), truncating")
        name = name[:MAX_INPUT_LENGTH]

    if is_suspicious_input(name):
        logger.warning("generate_slug: suspicious input, cleaning")
        if security_logger is not None:
            security_logger.suspicious_activity(
                "SUSPICIOUS_SLUG_INPUT", "system", "slugify", {"input": name[:100]},
            )

    slug = strip_accents(name.lower().strip())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")

    if not slug:
        logger.warning("generate_slug: nothing left after cleaning")
        return ""

    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip("-")

    if slug in RESERVED_SLUGS or slug in _RESERVED_LITERALS:
        slug = f"producto-{slug}"
    return slug


def generate_unique_slug(
    name: str,
    exists: Callable[[str], bool],
    security_logger: Optional[SecurityLogger] = None,
) -> str:
    """Append -2, -3, ... until `exists` reports the slug free."""
    base = generate_slug(name, security_logger) or "producto"
    slug = base
    counter = 2
    while exists(slug):
        if counter > MAX_UNIQUE_ATTEMPTS:
            logger.error("generate_unique_slug: too many collisions, using timestamp suffix")
            return f"{base}-{int(time.time() * 1000)}"
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def is_valid_slug(slug: str) -> bool:
    if not isinstance(slug, str) or not slug:
        return False
    if len(slug) > MAX_SLUG_LENGTH or not SLUG_PATTERN.match(slug):
        return False
    return slug not in RESERVED_SLUGS


def slug_to_name(slug: str) -> str:
    if not isinstance(slug, str) or not slug:
        return ""
    return " ".join(word[:1].upper() + word[1:] for word in slug.split("-"))
