"""Helpers for reading and rewriting form-encoded httpx requests in place."""

from urllib.parse import parse_qsl, urlencode

import httpx

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def is_form_encoded(request: httpx.Request) -> bool:
    content_type = request.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower() == FORM_CONTENT_TYPE


def get_form_fields(request: httpx.Request) -> list[tuple[str, str]]:
    """Return the form fields of a form-encoded request body, in order, repeated names included."""
    if not is_form_encoded(request):
        return []
    body = request.read()
    return parse_qsl(body.decode("utf-8"), keep_blank_values=True)


def set_form_fields(request: httpx.Request, fields: list[tuple[str, str]]) -> None:
    """Replace the body of `request` with `fields` encoded as application/x-www-form-urlencoded."""
    body = urlencode(fields).encode("utf-8")
    request.stream = httpx.ByteStream(body)
    request._content = body
    request.headers["Content-Type"] = FORM_CONTENT_TYPE
    request.headers["Content-Length"] = str(len(body))


def set_form_field(request: httpx.Request, name: str, value: str) -> None:
    """Set a single form field, replacing any existing values for `name`."""
    fields = [(k, v) for k, v in get_form_fields(request) if k != name]
    fields.append((name, value))
    set_form_fields(request, fields)


def get_form_field(request: httpx.Request, name: str) -> str | None:
    for key, value in get_form_fields(request):
        if key == name:
            return value
    return None
