from __future__ import annotations

import urllib.parse


def append_query_params(url: str, params: dict[str, str]) -> str:
    parsed = urllib.parse.urlparse(url)
    existing = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    for key, value in params.items():
        existing[key] = [value]

    new_query = urllib.parse.urlencode(existing, doseq=True)
    return urllib.parse.urlunparse(parsed._replace(query=new_query))


def parse_callback_params(callback_url: str) -> dict[str, str]:
    """Return the first value of each query parameter of an OAuth callback URL.

    Parameters repeated in the callback are rejected, as RFC 6749 requires
    each response parameter to appear at most once.
    """
    parsed = urllib.parse.urlparse(callback_url)
    values = urllib.parse.parse_qs(parsed.query, keep_blank_values=True)
    duplicated = sorted(key for key, items in values.items() if len(items) > 1)
    if duplicated:
        raise ValueError(f"Callback parameters repeated: {', '.join(duplicated)}")
    return {key: items[0] for key, items in values.items()}
