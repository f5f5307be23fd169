"""
Relying-party context resolution.

Works out which origin a ceremony runs under and which rpID its
credentials are bound to, and enforces the origin allow-list.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlparse

from .errors import OriginNotAllowed, OriginUnresolvable

LOOPBACK_HOST = re.compile(r'^(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$', re.IGNORECASE)


@dataclass(frozen=True)
class RPContext:
    origin: str
    rp_id: str


def _origin_from_host(host):
    host = (host or '').split(',')[0].strip()
    if not host:
        return None
    scheme = 'http' if LOOPBACK_HOST.match(host) else 'https'
    return f"{scheme}://{host}"


def _is_rp_id_for_host(rp_id, hostname):
    return hostname == rp_id or hostname.endswith('.' + rp_id)


def resolve_rp_context(origin=None, host=None, rp_id=None, default_rp_id=None,
                       platform_prefixes=()):
    """
    Resolve ``(origin, rpID)`` for a request.

    - An explicit origin is used as given, minus any trailing slash;
      otherwise it is derived from the (forwarded) host, using ``http``
      only for loopback hosts.
    - The rpID is the explicit override, then the app-wide default, then
      the hostname of the origin.
    - Platform origins such as ``android:apk-key-hash:...`` carry no
      hostname, so they need an rpID from the override or the default.
    """
    origin = ((origin or '').strip() or _origin_from_host(host) or '').rstrip('/')
    if not origin:
        raise OriginUnresolvable()

    if any(origin.startswith(prefix) for prefix in platform_prefixes):
        resolved_rp_id = rp_id or default_rp_id
        if not resolved_rp_id:
            raise OriginUnresolvable('No relying party ID is configured for this app origin.')
        return RPContext(origin=origin, rp_id=resolved_rp_id)

    try:
        parsed = urlparse(origin)
        hostname = parsed.hostname
    except ValueError:
        raise OriginUnresolvable('The request origin is not a valid URL.')

    if parsed.scheme not in ('http', 'https') or not hostname:
        raise OriginUnresolvable('The request origin is not a valid URL.')

    if rp_id:
        rp_id = rp_id.strip().lower()
        if not _is_rp_id_for_host(rp_id, hostname):
            raise OriginNotAllowed('The relying party ID does not match the request origin.')
        return RPContext(origin=origin, rp_id=rp_id)

    return RPContext(origin=origin, rp_id=default_rp_id or hostname)


class OriginPolicy:
    """Static allow-list of web origins plus accepted platform prefixes."""

    def __init__(self, allowed_origins=(), allowed_prefixes=()):
        self.allowed_origins = frozenset(o.rstrip('/') for o in allowed_origins)
        self.allowed_prefixes = tuple(allowed_prefixes)

    def is_allowed(self, origin):
        if not origin:
            return False
        if origin.rstrip('/') in self.allowed_origins:
            return True
        return any(origin.startswith(prefix) for prefix in self.allowed_prefixes)

    def check(self, origin):
        if not self.is_allowed(origin):
            raise OriginNotAllowed()
        return origin
