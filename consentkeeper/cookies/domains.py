"""Cookie domain helpers."""

from typing import Optional
from urllib.parse import urlparse

# Regional and www prefixes stripped when looking up bundled manifests
MANIFEST_HOST_PREFIXES = ("www.", "us.", "uk.")


def normalize_domain(domain: Optional[str]) -> str:
    """Lower-case a cookie domain and drop its leading dot.

    ``.example.com`` and ``example.com`` are equivalent cookie domains.
    """
    if not domain:
        return ""
    return domain.strip().lower().lstrip('.')


def domains_related(cookie_domain: str, target_domain: str) -> bool:
    """Check whether two cookie domains are equal or one contains the other.

    Matching happens on label boundaries: ``ads.example.com`` is a subdomain
    of ``example.com`` but ``badexample.com`` is not.
    """
    a = normalize_domain(cookie_domain)
    b = normalize_domain(target_domain)
    if not a or not b:
        return False
    return a == b or a.endswith(f'.{b}') or b.endswith(f'.{a}')


def hostname_of(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def manifest_host(hostname: str) -> str:
    """Hostname used to find a bundled manifest file."""
    host = normalize_domain(hostname)
    for prefix in MANIFEST_HOST_PREFIXES:
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host
