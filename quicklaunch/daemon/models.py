"""Data models for the launcher daemon."""

from dataclasses import dataclass, field, fields, replace, asdict
from enum import Enum
from typing import Any, Dict, Optional

from .error_handling import MalformedCandidateError
from .paths import normalize


class CandidateKind(Enum):
    """Type tag of a selectable result."""
    APP = "app"
    FILE = "file"
    URL = "url"
    EMAIL = "email"
    HISTORY = "history"
    MEMO = "memo"
    PLUGIN = "plugin"
    SEARCH = "search"
    JSON_FORMATTER = "json_formatter"
    SETTINGS = "settings"
    EVERYTHING = "everything"
    AI = "ai"


@dataclass(frozen=True)
class AppInfo:
    name: str
    path: str
    icon: Optional[str] = None
    name_pinyin: Optional[str] = None
    name_pinyin_initials: Optional[str] = None


@dataclass(frozen=True)
class FileInfo:
    path: str
    name: str
    use_count: int = 0
    last_used: Optional[float] = None
    is_folder: Optional[bool] = None


@dataclass(frozen=True)
class EverythingInfo:
    path: str
    name: str
    size: Optional[int] = None


@dataclass(frozen=True)
class MemoInfo:
    id: str
    title: str
    content: str = ""


@dataclass(frozen=True)
class PluginInfo:
    id: str
    name: str
    description: str = ""


# Which payload field each kind requires; None means the kind carries no payload.
PAYLOAD_FIELDS: Dict[CandidateKind, Optional[str]] = {
    CandidateKind.APP: "app",
    CandidateKind.FILE: "file",
    CandidateKind.URL: "url",
    CandidateKind.EMAIL: "email",
    CandidateKind.HISTORY: None,
    CandidateKind.MEMO: "memo",
    CandidateKind.PLUGIN: "plugin",
    CandidateKind.SEARCH: None,
    CandidateKind.JSON_FORMATTER: "json_content",
    CandidateKind.SETTINGS: None,
    CandidateKind.EVERYTHING: "everything",
    CandidateKind.AI: "ai_answer",
}

_PAYLOAD_TYPES = {
    "app": AppInfo,
    "file": FileInfo,
    "everything": EverythingInfo,
    "memo": MemoInfo,
    "plugin": PluginInfo,
}


@dataclass(frozen=True)
class Candidate:
    """
    One selectable, typed search result.

    Exactly one payload field is populated, the one named by PAYLOAD_FIELDS
    for the kind. Candidates are immutable and discarded after a selection.
    """
    kind: CandidateKind
    path: str
    label: str
    app: Optional[AppInfo] = None
    file: Optional[FileInfo] = None
    url: Optional[str] = None
    email: Optional[str] = None
    memo: Optional[MemoInfo] = None
    plugin: Optional[PluginInfo] = None
    json_content: Optional[str] = None
    everything: Optional[EverythingInfo] = None
    ai_answer: Optional[str] = None

    def payload(self) -> Any:
        name = PAYLOAD_FIELDS[self.kind]
        return getattr(self, name) if name else None

    def validate(self) -> None:
        """Raise MalformedCandidateError unless exactly the tagged payload is present."""
        if not isinstance(self.kind, CandidateKind):
            raise MalformedCandidateError(f"unknown candidate kind {self.kind!r}")
        for name in ("path", "label"):
            if not isinstance(getattr(self, name), str):
                raise MalformedCandidateError(f"{self.kind.value} candidate {name} is not a string")

        required = PAYLOAD_FIELDS[self.kind]
        for name in sorted(_PAYLOAD_TYPES.keys() | {"url", "email", "json_content", "ai_answer"}):
            value = getattr(self, name)
            if name == required:
                if value is None or value == "":
                    raise MalformedCandidateError(f"{self.kind.value} candidate has no {name}")
                expected = _PAYLOAD_TYPES.get(name, str)
                if not isinstance(value, expected):
                    raise MalformedCandidateError(f"{self.kind.value} candidate {name} has the wrong type")
                if not isinstance(getattr(value, "path", ""), str):
                    raise MalformedCandidateError(f"{self.kind.value} candidate {name} path is not a string")
            elif value is not None:
                raise MalformedCandidateError(f"{self.kind.value} candidate carries unexpected {name}")

    def is_well_formed(self) -> bool:
        try:
            self.validate()
        except MalformedCandidateError:
            return False
        return True

    @property
    def key(self) -> str:
        return normalize(self.path)

    @classmethod
    def for_app(cls, app: AppInfo) -> "Candidate":
        return cls(kind=CandidateKind.APP, path=app.path, label=app.name, app=app)

    @classmethod
    def for_file(cls, file: FileInfo) -> "Candidate":
        return cls(kind=CandidateKind.FILE, path=file.path, label=file.name, file=file)

    @classmethod
    def for_url(cls, url: str, label: Optional[str] = None) -> "Candidate":
        return cls(kind=CandidateKind.URL, path=url, label=label or url, url=url)

    @classmethod
    def for_email(cls, email: str) -> "Candidate":
        return cls(kind=CandidateKind.EMAIL, path=email, label=email, email=email)

    @classmethod
    def for_everything(cls, item: EverythingInfo) -> "Candidate":
        return cls(kind=CandidateKind.EVERYTHING, path=item.path, label=item.name, everything=item)

    @classmethod
    def for_memo(cls, memo: MemoInfo) -> "Candidate":
        return cls(kind=CandidateKind.MEMO, path=f"memo://{memo.id}", label=memo.title, memo=memo)

    @classmethod
    def for_plugin(cls, plugin: PluginInfo) -> "Candidate":
        return cls(kind=CandidateKind.PLUGIN, path=f"plugin://{plugin.id}", label=plugin.name, plugin=plugin)

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.kind.value, "path": self.path, "label": self.label}
        for f in fields(self):
            if f.name in data:
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            data[f.name] = asdict(value) if f.name in _PAYLOAD_TYPES else value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        """Build from API JSON. Raises ValueError on an unknown kind; payload shape is not validated here."""
        kind = CandidateKind(data["kind"])
        kwargs: Dict[str, Any] = {
            "kind": kind,
            "path": data.get("path") or "",
            "label": data.get("label") or data.get("path") or "",
        }
        for name in ("url", "email", "json_content", "ai_answer"):
            if data.get(name) is not None:
                kwargs[name] = data[name]
        for name, payload_type in _PAYLOAD_TYPES.items():
            raw = data.get(name)
            if isinstance(raw, dict):
                known = {f.name for f in fields(payload_type)}
                kwargs[name] = payload_type(**{k: v for k, v in raw.items() if k in known})
        return cls(**kwargs)


@dataclass(frozen=True)
class HistoryEntry:
    """
    A persisted record of a previously used path.

    Frozen: use_count is owned by the backend store and only ever replaced
    wholesale by reconciliation. touched() is the one local mutation.
    """
    path: str
    name: str
    last_used: float
    use_count: int = 0
    is_folder: Optional[bool] = None

    def __post_init__(self):
        if not isinstance(self.use_count, int) or isinstance(self.use_count, bool) or self.use_count < 0:
            raise ValueError(f"use_count must be a non-negative integer, got {self.use_count!r}")

    @property
    def key(self) -> str:
        return normalize(self.path)

    def touched(self, timestamp: float) -> "HistoryEntry":
        return replace(self, last_used=timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ScoreContext:
    """Immutable per-query snapshot of signals passed into the scorer."""
    query: str
    use_count: Optional[int] = None
    last_used_at: Optional[float] = None
    is_running: bool = False
    is_app_type: bool = False
    pinyin_full: Optional[str] = None
    pinyin_initials: Optional[str] = None
    is_history_item: bool = False


@dataclass
class ScoredCandidate:
    candidate: Candidate
    score: int
    signals: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = self.candidate.to_dict()
        data["score"] = self.score
        if self.signals:
            data["signals"] = self.signals
        return data
