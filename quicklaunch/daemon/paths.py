"""Path normalization for identity comparison across case and separator conventions."""

import re
from typing import Optional
from urllib.parse import urlparse


# Two or more scheme characters so a drive letter ("c:") is never mistaken for a scheme.
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]+:")
_WEB_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_DRIVE_PATH_RE = re.compile(r"^[A-Za-z]:[\\/]")

SYSTEM_FOLDER_PREFIXES = ("ms-settings:", "shell:", "::{")
SYSTEM_FOLDER_NAMES = {"control", "control panel", "this pc", "recycle bin"}


def is_opaque_identifier(path: str) -> bool:
    """True for scheme-style identifiers (ms-settings:, shell:, URLs) and GUID shell paths."""
    return path.startswith("::") or bool(_SCHEME_RE.match(path))


def normalize(path: Optional[str]) -> str:
    """
    Canonical storage key for a path.

    Lower-cases and converts backslashes to forward slashes. Opaque identifiers
    are returned untouched. Total and idempotent.
    """
    if not path or not isinstance(path, str):
        return ""
    path = path.strip()
    if is_opaque_identifier(path):
        return path
    return path.lower().replace("\\", "/")


def normalize_for_comparison(path: Optional[str]) -> str:
    """normalize() plus trailing separator trimming. Equality checks only, never a storage key."""
    key = normalize(path)
    if is_opaque_identifier(key):
        return key
    trimmed = key.rstrip("/")
    return trimmed or key


def same_path(a: Optional[str], b: Optional[str]) -> bool:
    return normalize_for_comparison(a) == normalize_for_comparison(b)


def is_web_url(path: Optional[str]) -> bool:
    return bool(path) and bool(_WEB_URL_RE.match(path.strip()))


def is_lnk_path(path: Optional[str]) -> bool:
    return bool(path) and path.lower().endswith(".lnk")


def is_likely_absolute_path(text: Optional[str]) -> bool:
    """Drive-letter, UNC or POSIX-root path, as typed into the query box."""
    if not text:
        return False
    text = text.strip()
    if len(text) < 3:
        return False
    return bool(_DRIVE_PATH_RE.match(text)) or text.startswith("\\\\") or text.startswith("/")


def is_folder_like_path(path: Optional[str]) -> bool:
    """No extension on the last segment, or a trailing separator."""
    if not path or not path.strip():
        return False
    trimmed = path.strip()
    if trimmed.endswith(("\\", "/")):
        return True
    name = re.split(r"[\\/]", trimmed)[-1]
    return "." not in name.lstrip(".")


def is_executable_artifact(path: Optional[str]) -> bool:
    """Real launchable files (.exe/.lnk), as opposed to UWP ids or shell aliases."""
    if not path:
        return False
    lowered = path.lower()
    return lowered.endswith(".exe") or lowered.endswith(".lnk")


def is_recent_folder(path: Optional[str]) -> bool:
    """Paths inside the shell's "Recent items" folder are aliases, not real usage."""
    if not path:
        return False
    return "/recent/" in normalize(path)


def is_system_folder(path: Optional[str]) -> bool:
    if not path:
        return False
    lowered = path.strip().lower()
    return lowered in SYSTEM_FOLDER_NAMES or lowered.startswith(SYSTEM_FOLDER_PREFIXES)


def display_name_for(path: str, is_url: bool = False) -> str:
    """Host name for URLs, last path segment otherwise."""
    if is_url or is_web_url(path):
        try:
            host = urlparse(path).hostname
        except ValueError:
            host = None
        return host or path
    trimmed = path.strip().rstrip("\\/")
    name = re.split(r"[\\/]", trimmed)[-1] if trimmed else ""
    return name or trimmed or path
