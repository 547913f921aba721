import re
from urllib.parse import urlparse

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def is_absolute_http_url(value: str) -> bool:
    if not value or any(ch.isspace() for ch in value):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def is_uuid_shaped(value: str | None) -> bool:
    return bool(value) and UUID_PATTERN.match(value) is not None


def extension_for_content_type(content_type: str | None, default: str = "jpg") -> str:
    """Map a response content type to a file extension (ignores parameters)."""
    if not content_type:
        return default
    mime = content_type.split(";", 1)[0].strip().lower()
    return CONTENT_TYPE_EXTENSIONS.get(mime, default)


def extension_from_url(url: str) -> str | None:
    """Extension of the last path segment, `undefined` normalized away."""
    name = urlparse(url).path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    ext = name.rsplit(".", 1)[-1].lower()
    if ext in ("", "undefined"):
        return None
    return "jpg" if ext == "jpeg" else ext


def shorten(url: str | None, keep: int = 50) -> str:
    """Trim URLs for log lines."""
    if not url:
        return ""
    return url if len(url) <= keep else url[:keep] + "..."
