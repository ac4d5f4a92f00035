"""Human-readable slugs derived from product titles."""

import hashlib
import re

from shopcrawl.core.constants import SLUG_MAX_LENGTH

# Anything that is not a latin letter, digit or Hangul syllable becomes a separator
_NON_SLUG_CHARS = re.compile(r"[^a-z0-9가-힣]+")


def slugify(title: str, max_length: int = SLUG_MAX_LENGTH, fallback: str = "item") -> str:
    """Lower-case ``title``, collapse whitespace and punctuation to '-', and truncate.

    >>> slugify("Anker 737 Power Bank (PowerCore 24K)!")
    'anker-737-power-bank-powercore-24k'
    """
    slug = _NON_SLUG_CHARS.sub("-", (title or "").lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or fallback


def hash_fragment(value: str, length: int = 6) -> str:
    """Short deterministic fragment used to disambiguate colliding slugs."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:length]


def with_suffix(base: str, suffix: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Append ``-suffix`` to ``base`` without exceeding ``max_length``."""
    room = max_length - len(suffix) - 1
    return f"{base[:room].rstrip('-')}-{suffix}"
