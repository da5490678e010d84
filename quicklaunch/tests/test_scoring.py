"""Tests for relevance scoring."""

import time

from quicklaunch.daemon.models import ScoreContext
from quicklaunch.daemon.scoring import (
    APP_TYPE_BONUS, EXACT_MATCH, HISTORY_ITEM_BONUS, PREFIX_MATCH, RECENCY_MAX_BONUS,
    calculate_relevance_score, recency_bonus, score_with_context, text_match_score, usage_bonus,
)


NOW = 1_700_000_000.0


class TestTextMatch:
    """Literal and pinyin tiers."""

    def test_exact_beats_prefix(self):
        exact = calculate_relevance_score("Chrome", "C:\\chrome.exe", "chrome", now=NOW)
        prefix = calculate_relevance_score("Chrome Canary", "C:\\canary.exe", "chrome", now=NOW)
        assert exact > 1000
        assert PREFIX_MATCH <= prefix < exact

    def test_prefix_beats_substring(self):
        prefix = text_match_score("Visual Studio", "x", "vis")
        substring = text_match_score("Microsoft Visual Studio", "x", "vis")
        assert prefix > substring > 0

    def test_case_insensitive(self):
        assert text_match_score("NOTEPAD", "", "notepad") == EXACT_MATCH

    def test_empty_query_scores_zero(self):
        assert text_match_score("Anything", "C:\\anything.exe", "") == 0
        assert text_match_score("Anything", "C:\\anything.exe", "   ") == 0

    def test_no_match(self):
        assert text_match_score("Calculator", "C:\\calc.exe", "zzz") == 0

    def test_pinyin_full_match(self):
        score = calculate_relevance_score(
            "微信", "C:\\wechat.exe", "weixin",
            is_app_type=True, pinyin_full="weixin", pinyin_initials="wx", now=NOW,
        )
        assert score > 800

    def test_pinyin_exact_ranks_between_literal_exact_and_substring(self):
        pinyin_exact = text_match_score("微信", "C:\\wechat.exe", "weixin", "weixin", "wx")
        literal_exact = text_match_score("Weixin", "C:\\wx.exe", "weixin")
        literal_prefix = text_match_score("Weixin Helper", "C:\\wxh.exe", "weixin")
        literal_substring = text_match_score("My Weixin Tool", "C:\\tool.exe", "weixin")

        assert pinyin_exact == 800
        assert literal_exact > pinyin_exact > literal_prefix > literal_substring > 0

    def test_pinyin_initials_match(self):
        score = text_match_score("微信", "C:\\wechat.exe", "wx", "weixin", "wx")
        assert score == 600

    def test_secondary_families_add_a_tenth(self):
        # literal exact 1200 + filename 80 // 10
        assert text_match_score("notes", "/home/me/notes.txt", "notes") == EXACT_MATCH + 8

    def test_filename_only_match(self):
        assert text_match_score("Editor", "/usr/bin/gedit", "gedit") == 80


class TestBonuses:
    """Usage, recency and flag bonuses."""

    def test_usage_monotonic_until_saturation(self):
        assert usage_bonus(10) > usage_bonus(5)
        assert usage_bonus(30) == usage_bonus(100) == 90
        assert usage_bonus(None) == 0
        assert usage_bonus(0) == 0

    def test_more_use_scores_higher(self):
        ten = calculate_relevance_score("Term", "t", "term", use_count=10, now=NOW)
        five = calculate_relevance_score("Term", "t", "term", use_count=5, now=NOW)
        assert ten > five

    def test_recency_decays(self):
        assert recency_bonus(NOW, now=NOW) == RECENCY_MAX_BONUS
        assert recency_bonus(NOW - 3600, now=NOW) > recency_bonus(NOW - 86400, now=NOW)
        assert recency_bonus(None, now=NOW) == 0

    def test_recency_accepts_milliseconds(self):
        hour_ago_ms = (NOW - 3600) * 1000
        day_ago_ms = (NOW - 86400) * 1000
        assert recency_bonus(hour_ago_ms, now=NOW) == recency_bonus(NOW - 3600, now=NOW)
        assert recency_bonus(hour_ago_ms, now=NOW) > recency_bonus(day_ago_ms, now=NOW)

    def test_future_timestamp_is_capped(self):
        assert recency_bonus(NOW + 3600, now=NOW) == RECENCY_MAX_BONUS

    def test_flag_bonuses(self):
        base = score_with_context("x", "", ScoreContext(query=""), now=NOW)
        assert base == 0
        app = score_with_context("x", "", ScoreContext(query="", is_app_type=True), now=NOW)
        history = score_with_context("x", "", ScoreContext(query="", is_history_item=True), now=NOW)
        assert app == APP_TYPE_BONUS
        assert history == HISTORY_ITEM_BONUS

    def test_running_adds_to_score(self):
        idle = calculate_relevance_score("Slack", "s", "slack", now=NOW)
        running = calculate_relevance_score("Slack", "s", "slack", is_running=True, now=NOW)
        assert running > idle


def test_scoring_is_deterministic():
    context = ScoreContext(query="code", use_count=4, last_used_at=NOW - 7200, is_app_type=True)
    first = score_with_context("VS Code", "C:\\code.exe", context, now=NOW)
    second = score_with_context("VS Code", "C:\\code.exe", context, now=NOW)
    assert first == second


def test_default_now_uses_wall_clock():
    score = calculate_relevance_score("x", "", "", last_used_at=time.time())
    assert score == RECENCY_MAX_BONUS
