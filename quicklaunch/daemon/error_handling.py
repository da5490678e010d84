"""Error taxonomy, failure classification and retry policy.

This module implements:
- Structured error codes at the host-action boundary
- Classification of host failures into target-missing vs. unclassified
- Exponential backoff with jitter for idempotent backend reads
"""

import asyncio
import inspect
import random
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from loguru import logger


class LauncherError(Exception):
    """Base class for launcher errors."""


class StoreError(LauncherError):
    """Backend store operation failed."""


class MalformedCandidateError(LauncherError):
    """Selected candidate lacks the payload its type tag requires."""


class HostErrorCode(Enum):
    """Stable codes raised by host action primitives."""
    SHORTCUT_MISSING = "shortcut_missing"
    SHORTCUT_TARGET_MISSING = "shortcut_target_missing"
    APP_NOT_FOUND = "app_not_found"
    PATH_NOT_FOUND = "path_not_found"
    PLUGIN_NOT_FOUND = "plugin_not_found"
    CLIPBOARD_UNAVAILABLE = "clipboard_unavailable"


class HostActionError(LauncherError):
    """A host action primitive failed. The message is shown to the user verbatim."""

    def __init__(self, message: str, code: Optional[HostErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class FailureKind(Enum):
    TARGET_MISSING = "target_missing"
    UNCLASSIFIED = "unclassified"


TARGET_MISSING_CODES = frozenset({
    HostErrorCode.SHORTCUT_MISSING,
    HostErrorCode.SHORTCUT_TARGET_MISSING,
    HostErrorCode.APP_NOT_FOUND,
    HostErrorCode.PATH_NOT_FOUND,
})

# Compatibility fallback for hosts that only report message text.
# Apps only match their own messages, never a bare "not found".
APP_MISSING_PATTERNS: Tuple[str, ...] = (
    "快捷方式文件不存在",    # shortcut file missing
    "快捷方式目标不存在",    # shortcut target missing
    "应用程序未找到",        # application not found
)
PATH_MISSING_PATTERNS: Tuple[str, ...] = (
    "path not found",
    "not found",
)
TARGET_MISSING_PATTERNS: Tuple[str, ...] = APP_MISSING_PATTERNS + PATH_MISSING_PATTERNS

# Message patterns per candidate kind value; kinds not listed use them all
_PATTERNS_BY_KIND: Dict[str, Tuple[str, ...]] = {
    "app": APP_MISSING_PATTERNS,
    "file": PATH_MISSING_PATTERNS,
    "everything": PATH_MISSING_PATTERNS,
}


def error_message(error: BaseException) -> str:
    message = getattr(error, "message", None) or str(error)
    return message or type(error).__name__


def classify_failure(error: BaseException, kind: Any = None) -> FailureKind:
    """
    Structured code first, message substrings only when no code is present.

    `kind` is the candidate kind (enum or value) the failure came from; it
    narrows which messages count as a missing target.
    """
    code = getattr(error, "code", None)
    if isinstance(code, HostErrorCode):
        return FailureKind.TARGET_MISSING if code in TARGET_MISSING_CODES else FailureKind.UNCLASSIFIED

    kind_value = getattr(kind, "value", kind)
    patterns = _PATTERNS_BY_KIND.get(kind_value, TARGET_MISSING_PATTERNS)
    message = error_message(error).lower()
    if any(pattern in message for pattern in patterns):
        logger.debug(f"Classified failure by message text: {message!r}")
        return FailureKind.TARGET_MISSING
    return FailureKind.UNCLASSIFIED


class RetryPolicy:
    """Retry policy with exponential backoff. Only for idempotent calls."""

    def __init__(self,
                 max_retries: int = 2,
                 base_delay: float = 0.2,
                 max_delay: float = 5.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        """
        Initialize retry policy.

        Args:
            max_retries: Maximum retry attempts
            base_delay: Base delay in seconds
            max_delay: Maximum delay in seconds
            exponential_base: Base for exponential backoff
            jitter: Whether to add jitter
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number `attempt` (0-based)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay = delay * (0.5 + random.random())
        return delay

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute function with retry policy.

        Raises:
            Exception: The last error once all retries fail
        """
        last_exception = None

        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result

            except Exception as e:
                last_exception = e

                if attempt < self.max_retries:
                    delay = self.calculate_delay(attempt)
                    logger.debug(f"Retry {attempt + 1}/{self.max_retries} after {delay:.2f}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    logger.warning(f"All retries failed: {e}")

        raise last_exception
