"""URL slug generation shared by posts, categories and tags."""
import re
import unicodedata

FALLBACK_SLUG = "untitled"

_WHITESPACE_RE = re.compile(r"\s+")
_INVALID_RE = re.compile(r"[^a-z0-9-]")
_DASH_RE = re.compile(r"-+")


def _strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _slugify(text: str) -> str:
    slug = _strip_diacritics(text.lower()).lower()
    slug = _WHITESPACE_RE.sub("-", slug)
    slug = _INVALID_RE.sub("", slug)
    return _DASH_RE.sub("-", slug).strip("-")


def has_slug_characters(text: str | None) -> bool:
    """True when *text* keeps at least one letter or digit once slugified."""
    return bool(text) and bool(_slugify(text))


def generate_slug(text: str | None) -> str:
    """
    Return a lowercase, URL-safe slug derived from *text*.

    ``"Café au Lait!"`` becomes ``"cafe-au-lait"``.  Input that reduces to
    nothing (empty, whitespace, pure punctuation) yields ``"untitled"``.
    The function is idempotent.
    """
    if not text:
        return FALLBACK_SLUG
    return _slugify(text) or FALLBACK_SLUG


def truncate_slug(slug: str, max_length: int) -> str:
    """Cut *slug* to at most *max_length* characters without a trailing hyphen."""
    if len(slug) <= max_length:
        return slug
    return slug[:max_length].rstrip("-") or FALLBACK_SLUG
