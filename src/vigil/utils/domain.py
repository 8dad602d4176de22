"""
Domain utilities - URL and domain matching for Vigil.

Used by the security watchdog (allowed_domains) and by action execution
(sensitive data scoped to domain patterns).
"""

import fnmatch
import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

NEW_TAB_URLS = ("about:blank", "chrome://new-tab-page/", "chrome://new-tab-page", "chrome://newtab/")


def is_new_tab_page(url: str) -> bool:
    """True for blank and new-tab pages."""
    return url in NEW_TAB_URLS


def is_url_allowed(url: str, allowed_domains: list[str] | None) -> bool:
    """
    Check if a URL is allowed based on the allowed_domains list.

    Args:
        url: The URL to check
        allowed_domains: List of allowed domain patterns

    Returns:
        True if allowed, False otherwise

    Examples:
        allowed_domains = ["example.com", "*.example.org"]
        is_url_allowed("https://example.com/docs", allowed_domains)  # True
        is_url_allowed("https://api.example.org", allowed_domains)   # True
        is_url_allowed("https://google.com", allowed_domains)        # False
    """
    if not allowed_domains:
        return True

    # Internal browser pages are always reachable
    if is_new_tab_page(url):
        return True

    host = extract_domain_from_url(url)
    if not host:
        return False

    return any(_matches_domain(host, pattern) for pattern in allowed_domains)


def _matches_domain(host: str, pattern: str) -> bool:
    """Check if a host matches a domain pattern."""
    host = host.lower()
    pattern = pattern.lower()

    if "://" in pattern:
        pattern = pattern.split("://", 1)[1]

    host_variants = [host]
    if host.startswith("www."):
        host_variants.append(host[4:])
    else:
        host_variants.append(f"www.{host}")

    if pattern.startswith("*."):
        # *.example.com matches example.com and sub.example.com
        domain_part = pattern[2:]
        return any(h == domain_part or h.endswith("." + domain_part) for h in host_variants)
    if "*" in pattern:
        return any(fnmatch.fnmatch(h, pattern) for h in host_variants)
    return pattern in host_variants


def match_url_with_domain_pattern(url: str, domain_pattern: str, log_warnings: bool = False) -> bool:
    """
    Match a URL against a scheme-aware domain pattern.

    Patterns look like "example.com", "*.example.com" or "http*://example.com".
    A pattern without a scheme only matches https. New-tab pages never match,
    and unsafe wildcards (several wildcards, wildcard TLDs) are rejected.

    Args:
        url: Page URL
        domain_pattern: Pattern to match against
        log_warnings: Log rejected patterns

    Returns:
        True if the URL's scheme and host match the pattern
    """
    if is_new_tab_page(url):
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    scheme = (parsed.scheme or "").lower()
    domain = (parsed.hostname or "").lower()
    if not scheme or not domain:
        return False

    pattern_scheme = "https"
    pattern_domain = domain_pattern.lower()
    if "://" in pattern_domain:
        pattern_scheme, pattern_domain = pattern_domain.split("://", 1)

    if ":" in pattern_domain and not pattern_domain.startswith(":"):
        pattern_domain = pattern_domain.split(":", 1)[0]

    if not fnmatch.fnmatchcase(scheme, pattern_scheme):
        return False

    if pattern_domain == "*" or domain == pattern_domain:
        return True

    if "*" not in pattern_domain:
        return False

    if pattern_domain.count("*.") > 1 or pattern_domain.count(".*") > 1:
        if log_warnings:
            logger.error(f"Multiple wildcards in pattern={domain_pattern} are not supported")
        return False

    if pattern_domain.endswith(".*"):
        if log_warnings:
            logger.error(f"Wildcard TLDs like in pattern={domain_pattern} are not supported")
        return False

    if "*" in pattern_domain.replace("*.", "", 1):
        if log_warnings:
            logger.error(f"Only *.domain style patterns are supported, ignoring pattern={domain_pattern}")
        return False

    if pattern_domain.startswith("*.") and domain == pattern_domain[2:]:
        return True

    return fnmatch.fnmatchcase(domain, pattern_domain)


def extract_domain_from_url(url: str) -> str | None:
    """Extract domain from URL."""
    try:
        return urlparse(url).hostname
    except ValueError:
        return None
