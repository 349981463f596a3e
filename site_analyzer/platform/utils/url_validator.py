from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse, urlunparse

import tldextract

from site_analyzer.platform.exceptions import ValidationError

NON_FETCHABLE_PREFIXES = ("mailto:", "tel:", "javascript:", "data:", "#")

# Bundled public suffix snapshot, no network fetch. Private suffixes such as
# github.io count, so bar.github.io and foo.github.io are different sites.
suffix_extractor = tldextract.TLDExtract(suffix_list_urls=(), include_psl_private_domains=True)


def normalize_url(url: str) -> Tuple[str, bool]:

    url = url.strip()

    parsed = urlparse(url)

    if not parsed.scheme:
        normalized = f"https://{url}"
        return normalized, True

    return url, False


def validate_url(url: str) -> Tuple[bool, str, str]:
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    normalized_url, was_modified = normalize_url(url)

    try:
        parsed = urlparse(normalized_url)

        if parsed.scheme not in ["http", "https"]:
            return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

        if not parsed.netloc or not parsed.hostname:
            return False, normalized_url, "Invalid URL format: missing domain"

        if any(char.isspace() for char in parsed.netloc):
            return False, normalized_url, "Invalid URL format: whitespace in domain"

        return True, normalized_url, ""

    except ValueError as e:
        return False, normalized_url, f"URL parsing error: {str(e)}"


def require_valid_url(url: str) -> str:
    """Validate and return the normalized URL, raising ValidationError otherwise."""
    is_valid, normalized_url, error = validate_url(url)
    if not is_valid:
        raise ValidationError(error)
    return canonical_page_url(normalized_url)


def canonical_page_url(url: str) -> str:
    """
    Canonical form used for crawl bookkeeping.

    Lowercases scheme and host, drops the fragment and collapses a bare root
    path to the origin (https://example.com/ -> https://example.com).
    """
    parsed = urlparse(url)
    netloc = parsed.netloc.lower()
    path = parsed.path
    if path == "/" and not parsed.query:
        path = ""
    return urlunparse((parsed.scheme.lower(), netloc, path, parsed.params, parsed.query, ""))


def extract_hostname(url: str) -> str:
    normalized_url, _ = normalize_url(url)
    try:
        hostname = urlparse(normalized_url).hostname
    except ValueError:
        hostname = None
    if not hostname:
        raise ValidationError(f"Invalid URL format: {url}")
    return hostname.lower()


def extract_base_domain(hostname: str) -> str:
    """
    Registrable domain of a hostname, with `www.` treated as part of it.

    blog.example.com -> example.com, www.example.co.uk -> example.co.uk,
    bar.github.io -> bar.github.io. Hosts without a public suffix (localhost,
    IP addresses) are returned as is.
    """
    hostname = hostname.lower().split(":")[0]
    if hostname.startswith("www."):
        hostname = hostname[4:]

    extracted = suffix_extractor(hostname)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return hostname


def generate_display_name(url: str) -> str:
    """
    Clean display name: scheme and `www.` removed, other subdomains and a
    non-root path kept.

    https://www.example.com -> example.com, http://blog.example.com/docs/ -> blog.example.com/docs
    """
    parsed = urlparse(url)
    hostname = (parsed.hostname or "").lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    if not hostname:
        return url

    path = parsed.path.rstrip("/")
    return hostname + path if path else hostname


def alternate_hostname(hostname: str) -> str:
    """Toggle a leading `www.`."""
    if hostname.startswith("www."):
        return hostname[4:]
    return f"www.{hostname}"


def replace_hostname(url: str, hostname: str) -> str:
    parsed = urlparse(url)
    netloc = hostname
    if parsed.port:
        netloc = f"{hostname}:{parsed.port}"
    if parsed.username:
        credentials = parsed.username
        if parsed.password:
            credentials = f"{credentials}:{parsed.password}"
        netloc = f"{credentials}@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


def alternate_url(url: str) -> str:
    """Same URL with the www/non-www hostname variant."""
    return replace_hostname(url, alternate_hostname(extract_hostname(url)))


def resolve_link(href: Optional[str], page_url: str) -> Optional[str]:
    """
    Resolve an href found on `page_url` to an absolute, fetchable URL.

    Returns None for fragment-only links, non-http(s) schemes and anything
    that fails to parse.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(NON_FETCHABLE_PREFIXES):
        return None

    try:
        resolved = urljoin(page_url, href)
        parsed = urlparse(resolved)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            return None
    except ValueError:
        return None

    return canonical_page_url(resolved)
