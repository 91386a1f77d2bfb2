from urllib.parse import quote


def escape(value: str) -> str:
    """Percent-encode `value` as RFC 3986 requires: only A-Z a-z 0-9 - _ . ~ stay literal."""
    return quote(value, safe="~")
