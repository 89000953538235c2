import re
import unicodedata

MAX_SLUG_LENGTH = 60


def normalize_slug(value: str) -> str:
    """Restaurant name or requested slug -> lowercase ascii words joined by hyphens."""
    if not value:
        return ""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = value.lower()
    value = re.sub(r"[^a-z0-9]+", "-", value).strip("-")

    return value[:MAX_SLUG_LENGTH].rstrip("-")
