"""
www / non-www fallback for probes.

Sites are often reachable under only one of `example.com` and
`www.example.com`. When a probe fails because the hostname does not resolve,
it is retried once against the other variant.
"""
import logging
import socket
from typing import Any, Awaitable, Callable, Iterator, Optional, Tuple

from site_analyzer.features.analysis.models.audit_result import AuditCategory
from site_analyzer.features.analysis.schemas.probes import DnsResult
from site_analyzer.platform.exceptions import CancellationError, ProbeError
from site_analyzer.platform.logger import get_logger
from site_analyzer.platform.utils.url_validator import alternate_url

DNS_ERROR_MARKERS = (
    "ENOTFOUND",
    "getaddrinfo",
    "ERR_NAME_NOT_RESOLVED",
    "queryCname",
    "NXDOMAIN",
    "DNSException",
    "Name or service not known",
    "nodename nor servname",
    "Temporary failure in name resolution",
    "No address associated with hostname",
)

DnsFailurePredicate = Callable[[BaseException], bool]


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        cause = getattr(current, "cause", None)
        current = cause or current.__cause__ or current.__context__


def is_dns_failure(error: BaseException) -> bool:
    """True when `error`, or anything it was raised from, is a name-resolution failure."""
    for current in _error_chain(error):
        if isinstance(current, CancellationError):
            return False
        if isinstance(current, socket.gaierror):
            return True
        message = str(current)
        if any(marker in message for marker in DNS_ERROR_MARKERS):
            return True
    return False


def empty_dns_failure(category: AuditCategory, url: str, result: Any) -> Optional[ProbeError]:
    """A DNS lookup that returned no resolvable records counts as a DNS failure."""
    if category == AuditCategory.dns and isinstance(result, DnsResult) and not result.has_records():
        return ProbeError(category.value, url, "ENOTFOUND: no A, AAAA, CNAME, MX or NS records")
    return None


async def run_with_fallback(
    attempt: Callable[[str], Awaitable[Any]],
    url: str,
    category: AuditCategory,
    is_dns_failure: DnsFailurePredicate = is_dns_failure,
    logger: Optional[logging.Logger] = None,
) -> Tuple[Any, str]:
    """
    Run `attempt(url)`, retrying exactly once with the www-toggled URL when
    the first failure is DNS-class.

    `attempt` must raise ProbeError for probe failures. CancellationError is
    never retried.

    Returns:
        (result, url that produced it)

    Raises:
        ProbeError: both attempts failed, or the first failure was not DNS-class
    """
    logger = logger or get_logger(__name__)

    try:
        result = await attempt(url)
        failure = empty_dns_failure(category, url, result)
        if failure is None:
            return result, url
    except ProbeError as e:
        failure = e

    if not is_dns_failure(failure):
        raise failure

    retry_url = alternate_url(url)
    logger.info(f"{category.value} failed to resolve {url}, retrying with {retry_url}")

    try:
        result = await attempt(retry_url)
    except ProbeError as e:
        logger.warning(f"{category.value} alternate URL {retry_url} also failed: {e}")
        raise

    failure = empty_dns_failure(category, retry_url, result)
    if failure is not None:
        logger.warning(f"{category.value} alternate URL {retry_url} also failed: {failure}")
        raise failure

    return result, retry_url
