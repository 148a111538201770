import html
import re
from datetime import datetime
from email.utils import parseaddr

_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)[^>]*>[\s\S]*?</\1>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_json_fence(raw: str) -> str:
    """Return raw text with optional ```json fences removed."""
    text = (raw or "").strip()
    match = _JSON_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def strip_markup(raw: str) -> str:
    """Drop script/style blocks and tags, unescape entities, collapse whitespace."""
    text = _SCRIPT_STYLE_RE.sub(" ", raw or "")
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_email_address(sender: str) -> str:
    """'Ana Pop <ana@example.com>' → 'ana@example.com' (lowercased)."""
    _name, address = parseaddr(sender or "")
    return address.strip().lower()


def extract_display_name(sender: str) -> str:
    name, _address = parseaddr(sender or "")
    return name.strip().strip('"')


def mask_email(email: str) -> str:
    """Mask an address for logs: 'anapop@example.com' → 'ana***@example.com'."""
    if not email or "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    return f"{local[:3]}***@{domain}"


def format_local(dt: datetime | None, tz=None) -> str:
    """Human-readable local timestamp used in candidate-facing messages."""
    if dt is None:
        return ""
    if tz is not None:
        dt = dt.astimezone(tz)
    return dt.strftime("%A, %d %B %Y, %I:%M %p")
