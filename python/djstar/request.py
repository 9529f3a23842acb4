"""
Request inspection helpers.

All protocol detection goes through these functions so header names stay
configurable through ``DJSTAR_CONFIG``.
"""

from typing import Iterable, List, Optional, Union

from django.http.request import split_domain_port

from .config import config


def is_datastar(request) -> bool:
    """True when the request carries the ``Datastar-Request`` marker header."""
    if request is None:
        return False
    return config.get("request_header") in request.headers


def navigate_key(request) -> Optional[str]:
    """Raw ``Djstar-Navigate-Key`` header value, or None when absent or empty."""
    key = request.headers.get(config.get("navigate_key_header"), "")
    return key or None


def navigate_keys(request) -> List[str]:
    """Navigation keys of the request as a list (comma-separated header)."""
    key = navigate_key(request)
    if not key:
        return []
    return [part.strip() for part in key.split(",")]


def is_navigate(request, key: Union[str, Iterable[str], None] = None) -> bool:
    """
    Check whether *request* is a client navigation request.

    Without *key* any navigation request matches. With a key (or several),
    the request must carry at least one of them in its key header.
    """
    if config.get("navigate_header") not in request.headers:
        return False

    if key is None:
        return True

    keys = navigate_keys(request)
    if not keys:
        return False

    if isinstance(key, str):
        return key in keys
    return any(k in keys for k in key)


def same_host(request, host: Optional[str]) -> bool:
    """Compare *host* with the request host, ignoring ports and case."""
    if not host:
        return False
    request_domain, _ = split_domain_port(request.get_host())
    other_domain, _ = split_domain_port(host)
    if not other_domain:
        return False
    return request_domain == other_domain
