import re
import secrets
import string
from typing import Optional

from assessly.core.config import settings

SLUG_ALPHABET = string.ascii_lowercase + string.digits
_SLUG_RE = re.compile(r"^[a-z0-9-]+$")


def generate_slug(length: Optional[int] = None) -> str:
    n = length or settings.SLUG_LENGTH
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(n))


def is_valid_slug(slug) -> bool:
    # hyphens are accepted for legacy hand-written slugs
    return isinstance(slug, str) and bool(_SLUG_RE.match(slug))
