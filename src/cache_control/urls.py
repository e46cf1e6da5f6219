"""
URL normalization for HTTP cache purges.
"""
from typing import Iterable, List, Optional
from urllib.parse import urlsplit, urlunsplit

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url) -> Optional[str]:
    """
    Return the canonical form of an absolute http(s) URL.

    Scheme and host are lower-cased, default ports and fragments dropped, and
    the path always ends in a slash. Anything that is not an absolute http(s)
    URL yields None.
    """
    if not isinstance(url, str):
        return None

    url = url.strip()
    if not url:
        return None

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    host = parts.hostname
    if scheme not in DEFAULT_PORTS or not host:
        return None

    if ":" in host:
        host = f"[{host}]"
    if port and port != DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = parts.path or "/"
    if not path.endswith("/"):
        path += "/"

    return urlunsplit((scheme, host, path, parts.query, ""))


def normalize_urls(urls: Optional[Iterable[str]]) -> List[str]:
    """Normalize and de-duplicate URLs, preserving first-seen order."""
    if not urls:
        return []

    normalized = (normalize_url(url) for url in urls)
    return list(dict.fromkeys(url for url in normalized if url))


def url_path(url: str) -> str:
    """Return the trailing-slashed path of a URL."""
    path = urlsplit(url).path or "/"
    return path if path.endswith("/") else path + "/"
