"""URL checks shared by the fallback chain and target management."""

from typing import Any

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

_http_url = TypeAdapter(AnyHttpUrl)


def is_http_url(value: Any) -> bool:
    """True for a syntactically valid absolute http(s) URL with a host."""
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        parsed = _http_url.validate_python(value.strip())
    except PydanticValidationError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)
