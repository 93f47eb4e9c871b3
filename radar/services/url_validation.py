"""
Audit URL validation.

Only public http(s) sites may be audited: the PageSpeed API would refuse
private targets anyway, and accepting them would let users probe internal
networks through our scheduler.
"""

import ipaddress
import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

import dns.asyncresolver
import dns.exception
import dns.resolver

logger = logging.getLogger(__name__)

# RFC 6598 shared address space (carrier-grade NAT)
_CGNAT = ipaddress.ip_network("100.64.0.0/10")


@dataclass(frozen=True)
class UrlValidation:
    valid: bool
    error: str | None = None
    normalized: str | None = None


def is_private_address(value: str) -> bool:
    """True for loopback, private, link-local (cloud metadata), CGNAT and reserved IPs."""
    try:
        ip = ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return False
    if ip.version == 4 and ip in _CGNAT:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_unspecified
        or ip.is_reserved
        or ip.is_multicast
    )


def validate_audit_url(raw_url: str) -> UrlValidation:
    trimmed = (raw_url or "").strip()
    if not trimmed:
        return UrlValidation(False, "Please enter a URL")

    with_scheme = trimmed if trimmed.startswith(("http://", "https://")) else f"https://{trimmed}"

    try:
        parts = urlsplit(with_scheme)
        hostname = parts.hostname
        parts.port  # raises on a malformed port
    except ValueError:
        hostname = None
    if not hostname:
        return UrlValidation(False, "Please enter a valid URL (e.g. https://yoursite.com)")

    if parts.scheme not in ("http", "https"):
        return UrlValidation(False, "URL must use http or https")

    if hostname == "localhost" or hostname.endswith(".localhost") or is_private_address(hostname):
        return UrlValidation(False, "Cannot audit local or private network URLs")

    if "." not in hostname:
        return UrlValidation(False, "Please enter a full domain (e.g. yoursite.com)")

    normalized = with_scheme[:-1] if with_scheme.endswith("/") else with_scheme
    return UrlValidation(True, normalized=normalized)


async def resolves_to_private_address(hostname: str) -> bool:
    """Resolve A/AAAA records and report whether any points into a private range.

    Unresolvable names return False: the audit API reports those itself.
    """
    resolver = dns.asyncresolver.Resolver()
    resolver.lifetime = 5

    for rdtype in ("A", "AAAA"):
        try:
            answers = await resolver.resolve(hostname, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer, dns.resolver.NoNameservers):
            continue
        except dns.exception.DNSException as e:
            logger.warning("DNS lookup for %s (%s) failed: %s", hostname, rdtype, e)
            continue
        if any(is_private_address(r.to_text()) for r in answers):
            return True
    return False
