"""Relevance scoring for launcher candidates."""

import math
import time
from typing import Optional, Tuple

from .models import ScoreContext


# Literal label tiers
EXACT_MATCH = 1200
PREFIX_MATCH = 500
SUBSTRING_MATCH = 300

# Transliteration tiers. Full-form exact stays below a literal exact match
# but above a literal substring match.
PINYIN_FULL_TIERS = (800, 400, 150)
PINYIN_INITIALS_TIERS = (600, 300, 100)

# Query found in the file name of the candidate path only
FILENAME_MATCH = 80

# Share of a non-winning tier family that still counts
SECONDARY_TIER_DIVISOR = 10

# Additive bonuses; each stays under the smallest literal tier gap.
APP_TYPE_BONUS = 50
HISTORY_ITEM_BONUS = 60
RUNNING_BONUS = 20
USAGE_STEP = 3
USAGE_SATURATION = 30  # USAGE_STEP * USAGE_SATURATION = 90
RECENCY_MAX_BONUS = 90
RECENCY_TAU_HOURS = 24.0

# Epoch values beyond this are milliseconds
_MILLISECOND_THRESHOLD = 1e11


def _tier_score(text: Optional[str], query: str, tiers: Tuple[int, int, int]) -> int:
    if not text:
        return 0
    text = text.lower()
    exact, prefix, substring = tiers
    if text == query:
        return exact
    if text.startswith(query):
        return prefix
    if query in text:
        return substring
    return 0


def _filename_score(path: str, query: str) -> int:
    if not path:
        return 0
    name = path.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1].lower()
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return FILENAME_MATCH if query in stem else 0


def text_match_score(
    label: str,
    path: str,
    query: str,
    pinyin_full: Optional[str] = None,
    pinyin_initials: Optional[str] = None,
) -> int:
    """
    Base score from textual signals only.

    The best tier family (literal, pinyin full form, pinyin initials, file
    name) counts in full; every other family that matched adds a tenth of its
    own tier score. Empty query scores zero.
    """
    query = (query or "").strip().lower()
    if not query:
        return 0

    families = [
        _tier_score(label, query, (EXACT_MATCH, PREFIX_MATCH, SUBSTRING_MATCH)),
        _tier_score(pinyin_full, query, PINYIN_FULL_TIERS),
        _tier_score(pinyin_initials, query, PINYIN_INITIALS_TIERS),
        _filename_score(path, query),
    ]
    best = max(families)
    if best == 0:
        return 0

    secondary = sum(families) - best
    return best + secondary // SECONDARY_TIER_DIVISOR


def usage_bonus(use_count: Optional[int]) -> int:
    """Linear in use_count up to USAGE_SATURATION uses, flat after."""
    if not use_count or use_count < 0:
        return 0
    return min(use_count, USAGE_SATURATION) * USAGE_STEP


def recency_bonus(last_used_at: Optional[float], now: Optional[float] = None) -> int:
    """
    Exponential decay on hours since last use.

    bonus = RECENCY_MAX_BONUS * exp(-hours / RECENCY_TAU_HOURS)

    Accepts epoch seconds or epoch milliseconds.
    """
    if not last_used_at or last_used_at <= 0:
        return 0
    if now is None:
        now = time.time()
    if last_used_at > _MILLISECOND_THRESHOLD:
        last_used_at = last_used_at / 1000.0

    hours_ago = max(0.0, now - last_used_at) / 3600
    return int(round(RECENCY_MAX_BONUS * math.exp(-hours_ago / RECENCY_TAU_HOURS)))


def score_with_context(
    label: str,
    path: str,
    context: ScoreContext,
    now: Optional[float] = None,
) -> int:
    """Score a candidate from an immutable ScoreContext."""
    score = text_match_score(
        label,
        path,
        context.query,
        context.pinyin_full,
        context.pinyin_initials,
    )

    if context.is_app_type:
        score += APP_TYPE_BONUS
    if context.is_history_item:
        score += HISTORY_ITEM_BONUS
    if context.is_running:
        score += RUNNING_BONUS
    score += usage_bonus(context.use_count)
    score += recency_bonus(context.last_used_at, now)

    return score


def calculate_relevance_score(
    label: str,
    path: str,
    query: str,
    use_count: Optional[int] = None,
    last_used_at: Optional[float] = None,
    is_running: bool = False,
    is_app_type: bool = False,
    pinyin_full: Optional[str] = None,
    pinyin_initials: Optional[str] = None,
    is_history_item: bool = False,
    now: Optional[float] = None,
) -> int:
    """Positional form of score_with_context()."""
    context = ScoreContext(
        query=query,
        use_count=use_count,
        last_used_at=last_used_at,
        is_running=bool(is_running),
        is_app_type=bool(is_app_type),
        pinyin_full=pinyin_full,
        pinyin_initials=pinyin_initials,
        is_history_item=bool(is_history_item),
    )
    return score_with_context(label, path, context, now)
