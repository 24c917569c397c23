from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def normalize_database_url(url: str) -> str:
    """Force the asyncpg driver and translate libpq ``sslmode`` into asyncpg's ``ssl``."""
    url = (url or "").strip()
    if not url:
        return url

    parts = urlsplit(url)
    scheme = parts.scheme

    if scheme in {"postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"}:
        scheme = "postgresql+asyncpg"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    mode_key = next((key for key in query if key.lower() == "sslmode"), None)
    mode_val = query.pop(mode_key, None) if mode_key else None
    if mode_val is not None and "ssl" not in query:
        normalized = mode_val.lower().strip()
        if normalized in {"disable", "allow"}:
            query["ssl"] = "disable"
        else:
            query["ssl"] = normalized

    new_query = urlencode(query, doseq=True)
    return urlunsplit((scheme, parts.netloc, parts.path, new_query, parts.fragment))
