"""Tests for candidates, history entries and failure classification."""

import pytest

from quicklaunch.daemon.error_handling import (
    FailureKind, HostActionError, HostErrorCode, MalformedCandidateError, RetryPolicy, classify_failure,
)
from quicklaunch.daemon.models import (
    AppInfo, Candidate, CandidateKind, FileInfo, HistoryEntry, PAYLOAD_FIELDS,
)


class TestCandidate:

    def test_payload_table_covers_every_kind(self):
        assert set(PAYLOAD_FIELDS) == set(CandidateKind)

    def test_well_formed_constructors(self):
        assert Candidate.for_app(AppInfo(name="A", path="C:\\a.exe")).is_well_formed()
        assert Candidate.for_file(FileInfo(path="/f", name="f")).is_well_formed()
        assert Candidate.for_url("https://x.io").is_well_formed()
        assert Candidate(kind=CandidateKind.SETTINGS, path="settings://", label="Settings").is_well_formed()

    def test_empty_payload_is_malformed(self):
        assert not Candidate(kind=CandidateKind.EMAIL, path="", label="", email="").is_well_formed()
        assert not Candidate(kind=CandidateKind.FILE, path="/f", label="f").is_well_formed()

    def test_validate_names_the_problem(self):
        with pytest.raises(MalformedCandidateError, match="has no app"):
            Candidate(kind=CandidateKind.APP, path="x", label="x").validate()
        with pytest.raises(MalformedCandidateError, match="unexpected email"):
            Candidate(
                kind=CandidateKind.URL, path="u", label="u", url="u", email="e",
            ).validate()

    def test_non_string_fields_are_malformed(self):
        candidate = Candidate.from_dict({
            "kind": "file",
            "path": 123,
            "file": {"path": "/tmp/a.txt", "name": "a.txt"},
        })
        with pytest.raises(MalformedCandidateError, match="path is not a string"):
            candidate.validate()

        with pytest.raises(MalformedCandidateError, match="wrong type"):
            Candidate(kind=CandidateKind.URL, path="u", label="u", url=42).validate()

        nested = Candidate.from_dict({"kind": "file", "path": "/a", "file": {"path": 7, "name": "a"}})
        assert not nested.is_well_formed()

    def test_from_dict(self):
        candidate = Candidate.from_dict({
            "kind": "app",
            "path": "C:\\a.exe",
            "label": "A",
            "app": {"name": "A", "path": "C:\\a.exe", "unknown": 1},
        })

        assert candidate.app == AppInfo(name="A", path="C:\\a.exe")
        assert candidate.is_well_formed()
        assert candidate.to_dict()["app"]["name"] == "A"

    def test_from_dict_unknown_kind(self):
        with pytest.raises(ValueError):
            Candidate.from_dict({"kind": "nope"})


class TestHistoryEntry:

    def test_negative_use_count_rejected(self):
        with pytest.raises(ValueError):
            HistoryEntry(path="/a", name="a", last_used=1.0, use_count=-1)

    def test_touched_keeps_use_count(self):
        entry = HistoryEntry(path="C:\\A.txt", name="A.txt", last_used=1.0, use_count=3)

        touched = entry.touched(9.0)

        assert touched.last_used == 9.0
        assert touched.use_count == 3
        assert entry.last_used == 1.0
        assert touched.key == "c:/a.txt"


class TestClassification:

    @pytest.mark.parametrize("message", [
        "快捷方式文件不存在: C:\\x.lnk",
        "快捷方式目标不存在: C:\\x.lnk",
        "应用程序未找到: C:\\x.exe",
        "Path not found: /tmp/x",
        "Target NOT FOUND",
    ])
    def test_message_patterns(self, message):
        assert classify_failure(HostActionError(message)) is FailureKind.TARGET_MISSING

    def test_plain_exceptions_classified_by_text(self):
        assert classify_failure(FileNotFoundError("not found")) is FailureKind.TARGET_MISSING
        assert classify_failure(PermissionError("denied")) is FailureKind.UNCLASSIFIED

    def test_app_failures_only_match_app_messages(self):
        dll = HostActionError("VCRUNTIME140.dll was not found")
        assert classify_failure(dll, CandidateKind.APP) is FailureKind.UNCLASSIFIED
        assert classify_failure(HostActionError("Path not found: C:\\x.exe"), "app") is FailureKind.UNCLASSIFIED
        assert classify_failure(HostActionError("快捷方式目标不存在: x"), CandidateKind.APP) is FailureKind.TARGET_MISSING

    def test_path_failures_match_generic_messages(self):
        err = HostActionError("not found")
        assert classify_failure(err, CandidateKind.FILE) is FailureKind.TARGET_MISSING
        assert classify_failure(err, CandidateKind.EVERYTHING) is FailureKind.TARGET_MISSING
        assert classify_failure(HostActionError("应用程序未找到: x"), CandidateKind.FILE) is FailureKind.UNCLASSIFIED

    def test_code_wins_over_text(self):
        err = HostActionError("plugin not found", code=HostErrorCode.PLUGIN_NOT_FOUND)
        assert classify_failure(err) is FailureKind.UNCLASSIFIED

        err = HostActionError("something odd", code=HostErrorCode.SHORTCUT_TARGET_MISSING)
        assert classify_failure(err) is FailureKind.TARGET_MISSING


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("transient")
            return "ok"

        policy = RetryPolicy(max_retries=2, base_delay=0, jitter=False)

        assert await policy.execute(flaky) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up(self):
        async def broken():
            raise ConnectionError("down")

        policy = RetryPolicy(max_retries=1, base_delay=0, jitter=False)

        with pytest.raises(ConnectionError):
            await policy.execute(broken)

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=1, max_delay=3, jitter=False)
        assert policy.calculate_delay(0) == 1
        assert policy.calculate_delay(5) == 3
