"""Search orchestrator: gathers candidates, builds score contexts, ranks them."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional

from loguru import logger

from .bus import Event, EventBus, SEARCH_COMPLETED, get_event_bus
from .config import SearchConfig
from .history import HistoryCache
from .host import running_executables
from .models import AppInfo, Candidate, CandidateKind, FileInfo, HistoryEntry, ScoreContext, ScoredCandidate
from .paths import is_web_url, normalize, normalize_for_comparison
from .scoring import EXACT_MATCH, score_with_context, text_match_score
from .sources import query_candidates
from .store import BackendStore


@dataclass
class ResultLists:
    """In-memory lists the UI renders; pruned when a target turns out to be gone."""
    apps: List[AppInfo] = field(default_factory=list)
    results: List[ScoredCandidate] = field(default_factory=list)

    def prune(self, path: str) -> int:
        """Drop every entry for path from every list. Returns how many were removed."""
        target = normalize_for_comparison(path)
        before = len(self.apps) + len(self.results)
        self.apps = [a for a in self.apps if normalize_for_comparison(a.path) != target]
        self.results = [
            r for r in self.results
            if normalize_for_comparison(r.candidate.path) != target
        ]
        return before - len(self.apps) - len(self.results)


class SearchOrchestrator:
    """
    Ranks apps and history entries for a query.

    Query-derived candidates (links, e-mail addresses, JSON) are pinned above
    ranked matches and the web-search fallback always comes last.
    """

    def __init__(
        self,
        store: BackendStore,
        history: HistoryCache,
        results: Optional[ResultLists] = None,
        config: Optional[SearchConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config or SearchConfig()
        self._store = store
        self._history = history
        self.results = results or ResultLists()
        self._event_bus = event_bus or get_event_bus()
        self._apps_loaded = False
        self.last_query = ""

    async def refresh_apps(self) -> int:
        """Reload the application index from the store."""
        self.results.apps = await self._store.list_apps()
        self._apps_loaded = True
        logger.debug(f"Loaded {len(self.results.apps)} indexed applications")
        return len(self.results.apps)

    async def search(self, query: str, limit: Optional[int] = None) -> List[ScoredCandidate]:
        start_time = time.perf_counter()
        limit = limit or self.config.max_results
        query = (query or "").strip()

        if not self._apps_loaded:
            await self.refresh_apps()

        running = await self._running_names()
        now = time.time()
        ranked: List[ScoredCandidate] = []

        app_keys = set()
        for app in self.results.apps:
            app_keys.add(normalize(app.path))
            if not query:
                continue
            scored = self._score(Candidate.for_app(app), query, app, running, now)
            if scored.signals["text"] > 0:
                ranked.append(scored)

        for entry in self._history.entries():
            if entry.key in app_keys:
                continue
            scored = self._score(self._history_candidate(entry), query, None, running, now)
            if not query or scored.signals["text"] > 0:
                ranked.append(scored)

        pinned: List[ScoredCandidate] = []
        fallback: List[ScoredCandidate] = []
        for candidate in query_candidates(query, self.config.web_search_url):
            if candidate.kind is CandidateKind.SEARCH:
                fallback.append(ScoredCandidate(candidate, 0))
            else:
                pinned.append(ScoredCandidate(candidate, EXACT_MATCH))

        # A typed path or link already pinned is not listed twice
        pinned_keys = {normalize_for_comparison(p.candidate.path) for p in pinned}
        ranked = [r for r in ranked if normalize_for_comparison(r.candidate.path) not in pinned_keys]
        ranked.sort(key=lambda r: (-r.score, r.candidate.label.lower()))
        ranked = ranked[:limit]

        self.results.results = pinned + ranked + fallback
        self.last_query = query

        latency_ms = (time.perf_counter() - start_time) * 1000
        await self._event_bus.emit(Event(
            type=SEARCH_COMPLETED,
            data={
                "query": query,
                "latency_ms": latency_ms,
                "result_count": len(self.results.results),
            },
            source="search",
        ))
        return list(self.results.results)

    def _history_candidate(self, entry: HistoryEntry) -> Candidate:
        if is_web_url(entry.path):
            return Candidate.for_url(entry.path, label=entry.name)
        return Candidate.for_file(FileInfo(
            path=entry.path,
            name=entry.name,
            use_count=entry.use_count,
            last_used=entry.last_used,
            is_folder=entry.is_folder,
        ))

    def _score(
        self,
        candidate: Candidate,
        query: str,
        app: Optional[AppInfo],
        running: FrozenSet[str],
        now: float,
    ) -> ScoredCandidate:
        entry = self._history.get(candidate.path)
        context = ScoreContext(
            query=query,
            use_count=entry.use_count if entry else None,
            last_used_at=self._history.last_used(candidate.path),
            is_running=self._is_running(candidate.path, running),
            is_app_type=app is not None,
            pinyin_full=app.name_pinyin if app else None,
            pinyin_initials=app.name_pinyin_initials if app else None,
            is_history_item=entry is not None,
        )
        score = score_with_context(candidate.label, candidate.path, context, now)
        text = text_match_score(
            candidate.label, candidate.path, query, context.pinyin_full, context.pinyin_initials
        )
        signals: Dict[str, object] = {
            "text": text,
            "use_count": context.use_count,
            "last_used_at": context.last_used_at,
            "running": context.is_running,
            "history": context.is_history_item,
        }
        return ScoredCandidate(candidate, score, signals)

    async def _running_names(self) -> FrozenSet[str]:
        if not self.config.detect_running:
            return frozenset()
        try:
            return frozenset(await asyncio.to_thread(running_executables))
        except Exception as e:
            logger.warning(f"Running process detection failed: {e}")
            return frozenset()

    @staticmethod
    def _is_running(path: str, running: FrozenSet[str]) -> bool:
        if not running or not path:
            return False
        key = normalize(path)
        if key in running:
            return True
        name = key.rsplit("/", 1)[-1]
        return name.endswith(".exe") and name in running
