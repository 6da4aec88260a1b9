import re
from collections.abc import Awaitable, Callable

NON_SLUG_CHARS_RE = re.compile(r"[^a-z0-9]+")
FALLBACK_SLUG = "listing"

SlugProbe = Callable[[str, str | None], Awaitable[bool]]


def slugify(name: str) -> str:
    """Lower-case ``name`` and collapse every non-alphanumeric run into one hyphen."""
    base = NON_SLUG_CHARS_RE.sub("-", name.lower()).strip("-")
    return base or FALLBACK_SLUG


async def generate_slug(name: str, *, slug_exists: SlugProbe, exclude_id: str | None = None) -> str:
    """Return the first free slug for ``name``: ``base``, then ``base-1``, ``base-2``, ...

    ``exclude_id`` keeps a listing from colliding with its own current slug.
    """
    base = slugify(name)
    candidate = base
    counter = 1
    while await slug_exists(candidate, exclude_id):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate
