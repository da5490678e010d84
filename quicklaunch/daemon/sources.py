"""Candidates derived from the query text itself."""

import json
import re
from typing import List, Optional
from urllib.parse import quote_plus

from .models import Candidate, CandidateKind, FileInfo
from .paths import display_name_for, is_folder_like_path, is_likely_absolute_path


_URL_RE = re.compile(r"https?://[^\s<>\"'，。]+", re.IGNORECASE)
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
_TRAILING_PUNCT = ".,;:!?)]}"


def extract_urls(text: str) -> List[str]:
    """http(s) links in order of appearance, without duplicates."""
    if not text:
        return []
    urls: List[str] = []
    for match in _URL_RE.finditer(text):
        url = match.group(0).rstrip(_TRAILING_PUNCT)
        if url and url not in urls:
            urls.append(url)
    return urls


def extract_emails(text: str) -> List[str]:
    """Lower-cased e-mail addresses in order of appearance, without duplicates."""
    if not text:
        return []
    emails: List[str] = []
    for match in _EMAIL_RE.finditer(text):
        email = match.group(0).lower()
        if email not in emails:
            emails.append(email)
    return emails


def is_valid_json(text: str) -> bool:
    # Only objects and arrays are worth formatting
    if not text:
        return False
    stripped = text.strip()
    if not stripped or stripped[0] not in "{[":
        return False
    try:
        parsed = json.loads(stripped)
    except ValueError:
        return False
    return isinstance(parsed, (dict, list))


def path_candidate(query: str) -> Optional[Candidate]:
    """A typed absolute path becomes an openable file or folder result."""
    path = (query or "").strip().strip('"')
    if "\n" in path or not is_likely_absolute_path(path):
        return None
    return Candidate.for_file(FileInfo(
        path=path,
        name=display_name_for(path),
        is_folder=is_folder_like_path(path),
    ))


def web_search_candidate(query: str, url_template: str) -> Optional[Candidate]:
    query = (query or "").strip()
    if not query:
        return None
    url = url_template.replace("{query}", quote_plus(query))
    return Candidate(kind=CandidateKind.SEARCH, path=url, label=f"Search the web for \"{query}\"")


def query_candidates(query: str, url_template: str) -> List[Candidate]:
    """Path, URL, e-mail, JSON and web-search candidates for a raw query."""
    query = (query or "").strip()
    if not query:
        return []

    candidates: List[Candidate] = []
    if is_valid_json(query):
        candidates.append(Candidate(
            kind=CandidateKind.JSON_FORMATTER,
            path="json://formatter",
            label="Format JSON",
            json_content=query,
        ))
    else:
        typed_path = path_candidate(query)
        if typed_path is not None:
            candidates.append(typed_path)
        candidates.extend(Candidate.for_url(url) for url in extract_urls(query))
        candidates.extend(Candidate.for_email(email) for email in extract_emails(query))

    search = web_search_candidate(query, url_template)
    if search is not None:
        candidates.append(search)
    return candidates
