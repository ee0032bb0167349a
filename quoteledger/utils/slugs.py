"""Unguessable public links for agreements."""
import re
import secrets

# 18 random bytes -> 144 bits of entropy -> 24 base64url characters, no padding
SLUG_BYTES = 18

_SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def generate_public_slug() -> str:
    return secrets.token_urlsafe(SLUG_BYTES)


def is_valid_public_slug(slug: str) -> bool:
    if not slug or len(slug) < 20:
        return False
    return bool(_SLUG_PATTERN.match(slug))
