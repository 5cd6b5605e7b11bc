"""Helpers shared by the AWS service wrappers."""

import logging
from typing import Iterator, List, Sequence, TypeVar

from botocore.exceptions import BotoCoreError, ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
}

AWS_ERRORS = (ClientError, BotoCoreError)


def error_code(exc: BaseException) -> str:
    """Return the AWS error code carried by a ClientError, or an empty string."""
    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code", ""))
    return ""


def _is_throttling(exc: BaseException) -> bool:
    # Services wrap ClientError in ProviderError; the original is the cause.
    cause = exc.__cause__ or exc
    throttled = error_code(cause) in THROTTLING_CODES
    if throttled:
        logger.warning("AWS throttled the request, backing off: %s", exc)
    return throttled


# Read-only describe calls only. Writes must fail fast.
throttle_retry = retry(
    retry=retry_if_exception(_is_throttling),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Split ``items`` into lists of at most ``size`` elements."""
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
