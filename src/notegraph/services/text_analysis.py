"""Lexical analysis of note text: tokens, derived tags and titles.

Token counts feed the token-cosine component of the relatedness score.
Tags are derived from explicit ``#hashtags`` when a note carries any,
and otherwise from its most frequent content words.
"""

import re
from collections import Counter
from typing import Dict, List, Mapping, Optional

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for",
        "if", "in", "into", "is", "it", "no", "not", "of", "on", "or",
        "such", "that", "the", "their", "then", "there", "these", "they",
        "this", "to", "was", "will", "with", "we", "you", "i", "should",
        "ensure", "include", "including", "includes", "using", "use",
        "used", "based",
    }
)

# Too generic to be useful as a derived tag
TAG_BLACKLIST = frozenset({"idea", "plan", "project", "projects", "system", "systems"})

# Generic technical terms that over-connect unrelated domains
TOKEN_DOWNWEIGHTS: Dict[str, float] = {
    "flow": 0.4,
    "flows": 0.4,
    "stream": 0.4,
    "streams": 0.4,
    "pipe": 0.4,
    "pipes": 0.4,
    "branch": 0.4,
    "branches": 0.4,
    "terminal": 0.4,
    "terminals": 0.4,
}

DEFAULT_TITLE = "Untitled Idea"
MAX_DERIVED_TAGS = 5

_NON_TOKEN_CHARS = re.compile(r"[^a-z0-9#\s]")
_NON_TITLE_CHARS = re.compile(r"[^a-z0-9\s]")
_HASHTAG = re.compile(r"#[a-zA-Z0-9_-]+")


def normalize_token(token: str) -> str:
    """Fold simple English plurals (``libraries`` -> ``library``, ``graphs`` -> ``graph``)."""
    if len(token) <= 3:
        return token
    if token.endswith("ies") and len(token) > 4:
        return token[:-3] + "y"
    if (
        token.endswith("s")
        and len(token) > 4
        and not token.endswith(("ss", "us", "is"))
    ):
        return token[:-1]
    return token


def _content_words(text: str, pattern: re.Pattern) -> List[str]:
    normalized = pattern.sub(" ", text.lower())
    return [t for t in normalized.split() if len(t) >= 2 and t not in STOPWORDS]


def tokenize(text: str) -> Dict[str, int]:
    """Count normalized content tokens in ``text``."""
    counts = Counter(normalize_token(t) for t in _content_words(text, _NON_TOKEN_CHARS))
    return dict(counts)


def tokens_from_title(title: str) -> List[str]:
    """Content words of a title, without plural folding."""
    return _content_words(title, _NON_TITLE_CHARS)


def extract_tags(
    text: str,
    token_counts: Optional[Mapping[str, int]] = None,
    limit: int = MAX_DERIVED_TAGS,
) -> List[str]:
    """Derive tags for a note.

    Explicit hashtags win. Without any, the ``limit`` most frequent tokens
    of three or more characters are used, ties broken alphabetically.
    """
    hashtags: List[str] = []
    for match in _HASHTAG.findall(text):
        tag = match.lstrip("#").lower()
        if tag not in hashtags:
            hashtags.append(tag)
    if hashtags:
        return hashtags

    counts = token_counts if token_counts is not None else tokenize(text)
    candidates = [
        (token, count)
        for token, count in counts.items()
        if len(token) >= 3 and token not in TAG_BLACKLIST
    ]
    candidates.sort(key=lambda item: (-item[1], item[0]))
    return [token for token, _ in candidates[:limit]]


def pick_title(raw_body: str, provided_title: Optional[str] = None) -> str:
    """Choose a title: the provided one, else the first non-empty line."""
    if provided_title and provided_title.strip():
        return provided_title.strip()
    for line in raw_body.splitlines():
        if line.strip():
            return line.strip()
    return raw_body[:80].strip() or DEFAULT_TITLE
