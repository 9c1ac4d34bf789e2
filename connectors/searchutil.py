"""
================================================================================
Search Utilities - Normalization & Matching
================================================================================
Pure text helpers shared by every connector:

  - normalize()            lowercase, punctuation -> spaces, collapse whitespace
  - tokenize_normalized()  whitespace split with order-preserving de-duplication
  - matches_query()        substring OR all-tokens containment (never fuzzy)
  - extract_related_titles()
                           pull alias titles out of JSON blobs and labelled
                           HTML/text blocks ("Alternative Names: A; B; C")

Identity throughout is the normalized form, never raw string equality.
================================================================================
"""

import html
import json
import re
from typing import Iterable, List, Optional

_NORMALIZE_CHARS = "-._,:;!?()[]{}'\"/\\|+=#&*"
_NORMALIZE_TABLE = str.maketrans({ch: " " for ch in _NORMALIZE_CHARS})

STOP_WORDS = frozenset({"a", "an", "my", "of", "the", "to"})

_ALLOWED_SEPARATORS = frozenset("-'&:;,.!?()[]{}/\\+")

_LABEL_WORDS = (
    r"(?:alternative(?:\s+(?:titles?|names?))?|associated\s+names?"
    r"|other\s+names?|aliases?|synonyms?)"
)
_RELATED_LABEL_LINE = re.compile(r"^" + _LABEL_WORDS + r"\s*[:\-]\s*(.+)$", re.IGNORECASE)
_RELATED_LABEL_ONLY = re.compile(r"^" + _LABEL_WORDS + r"\s*[:\-]?\s*$", re.IGNORECASE)

_JSON_ALIAS_KEYS = (
    r"(?:alternativeTitles|alternative_titles|alternativeNames|alternative_names"
    r"|altTitles|alt_titles|otherTitles|other_titles|aliases|synonyms)"
)
_RELATED_JSON_ARRAY = re.compile(r'"' + _JSON_ALIAS_KEYS + r'"\s*:\s*\[(.*?)\]', re.IGNORECASE | re.DOTALL)
_RELATED_JSON_STRING = re.compile(r'"' + _JSON_ALIAS_KEYS + r'"\s*:\s*"([^"]+)"', re.IGNORECASE | re.DOTALL)
_JSON_QUOTED_STRING = re.compile(r'"([^"\\]*(?:\\.[^"\\]*)*)"')

_HTML_LINE_BREAKS = ("<br>", "<br/>", "<br />", "</p>", "</div>", "</li>", "</dd>", "</td>", "</tr>")
_HTML_TAG = re.compile(r"<[^>]+>", re.DOTALL)
_INLINE_WHITESPACE = re.compile(r"[ \t]+")

_BLOCK_DELIMITERS = ("|", ";", "•", " / ", ",")


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize(value: str) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    clean = (value or "").strip().lower()
    if not clean:
        return ""
    return " ".join(clean.translate(_NORMALIZE_TABLE).split())


def tokenize_normalized(normalized: str) -> List[str]:
    """Split an already-normalized string into unique tokens, keeping order."""
    tokens: List[str] = []
    seen = set()
    for part in (normalized or "").split():
        if part in seen:
            continue
        seen.add(part)
        tokens.append(part)
    return tokens


def significant_tokens(tokens: Iterable[str]) -> List[str]:
    """Drop stop words ("a", "the", ...) from a token list."""
    return [token for token in tokens if token not in STOP_WORDS]


# =============================================================================
# MATCHING
# =============================================================================

def contains_all_tokens(normalized_candidate: str, tokens: Iterable[str]) -> bool:
    for token in tokens:
        if token and token not in normalized_candidate:
            return False
    return True


def contains_any_token(normalized_candidate: str, tokens: Iterable[str]) -> bool:
    return any(token and token in normalized_candidate for token in tokens)


def matches_query(candidate: str, normalized_query: str, query_tokens: List[str]) -> bool:
    """
    True if the normalized candidate contains the query as a substring, or
    (when tokens are given) contains every query token.
    """
    normalized_candidate = normalize(candidate)
    if not normalized_candidate:
        return False
    if normalized_query and normalized_query in normalized_candidate:
        return True
    if not query_tokens:
        return False
    return contains_all_tokens(normalized_candidate, query_tokens)


def any_candidate_matches(candidates: Iterable[str], normalized_query: str, query_tokens: List[str]) -> bool:
    return any(matches_query(candidate, normalized_query, query_tokens) for candidate in candidates)


# =============================================================================
# DEDUPLICATION & FILTERING
# =============================================================================

def unique_non_empty(values: Iterable[str]) -> List[str]:
    """Trim values and drop blanks and normalized duplicates, keeping the first spelling."""
    unique: List[str] = []
    seen = set()
    for raw in values or ():
        trimmed = (raw or "").strip()
        key = normalize(trimmed)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(trimmed)
    return unique


def is_english_alphabet_name(value: str) -> bool:
    """
    Accept only ASCII letters, digits, whitespace and a small set of
    separator punctuation. At least one letter is required.
    """
    trimmed = (value or "").strip()
    if not trimmed:
        return False

    has_letter = False
    for ch in trimmed:
        if ("a" <= ch <= "z") or ("A" <= ch <= "Z"):
            has_letter = True
        elif "0" <= ch <= "9" or ch.isspace() or ch in _ALLOWED_SEPARATORS:
            continue
        else:
            return False
    return has_letter


def filter_english_alphabet_names(values: Iterable[str]) -> List[str]:
    filtered: List[str] = []
    seen = set()
    for raw in values or ():
        trimmed = (raw or "").strip()
        if not trimmed or not is_english_alphabet_name(trimmed):
            continue
        key = normalize(trimmed)
        if not key or key in seen:
            continue
        seen.add(key)
        filtered.append(trimmed)
    return filtered


def exclude_titles(values: Iterable[str], *titles: Optional[str]) -> List[str]:
    """Remove every value that normalizes equal to one of `titles`."""
    excluded = {normalize(title) for title in titles if title}
    return [value for value in unique_non_empty(values) if normalize(value) not in excluded]


def build_related_titles(primary_title: str, candidates: Iterable[str]) -> List[str]:
    """Latin-alphabet aliases, deduplicated, without the primary title."""
    return exclude_titles(filter_english_alphabet_names(candidates), primary_title)


# =============================================================================
# ALIAS EXTRACTION
# =============================================================================

def extract_related_titles(raw: str) -> List[str]:
    """Collect alias titles from embedded JSON fields and labelled text blocks."""
    trimmed = (raw or "").strip()
    if not trimmed:
        return []

    candidates = _extract_json_related_titles(trimmed)
    candidates.extend(_extract_text_related_titles(trimmed))
    return filter_english_alphabet_names(candidates)


def split_related_title_block(raw: str) -> List[str]:
    """Split "A; B | C, D" style blocks into individual candidates."""
    block = (raw or "").strip()
    if not block:
        return []
    for delimiter in _BLOCK_DELIMITERS:
        block = block.replace(delimiter, "\n")
    return [part.strip() for part in block.split("\n") if part.strip()]


def _decode_json_string(raw: str) -> str:
    if not raw:
        return ""
    try:
        return json.loads('"' + raw + '"').strip()
    except ValueError:
        return raw.strip()


def _extract_json_related_titles(raw: str) -> List[str]:
    titles: List[str] = []

    for match in _RELATED_JSON_ARRAY.finditer(raw):
        for quoted in _JSON_QUOTED_STRING.finditer(match.group(1)):
            value = _decode_json_string(quoted.group(1))
            if value:
                titles.extend(split_related_title_block(value))

    for match in _RELATED_JSON_STRING.finditer(raw):
        value = _decode_json_string(match.group(1))
        if value:
            titles.extend(split_related_title_block(value))

    return unique_non_empty(titles)


def _clean_line(line: str) -> str:
    return _INLINE_WHITESPACE.sub(" ", line).strip()


def _extract_text_related_titles(raw: str) -> List[str]:
    text = raw
    for tag in _HTML_LINE_BREAKS:
        text = text.replace(tag, "\n")
    text = html.unescape(_HTML_TAG.sub(" ", text))
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    lines = text.split("\n")
    collected: List[str] = []
    for index, raw_line in enumerate(lines):
        line = _clean_line(raw_line)
        if not line:
            continue

        label_match = _RELATED_LABEL_LINE.match(line)
        if label_match:
            collected.extend(split_related_title_block(label_match.group(1)))
            continue

        if _RELATED_LABEL_ONLY.match(line):
            for next_line in lines[index + 1:]:
                next_clean = _clean_line(next_line)
                if next_clean:
                    collected.extend(split_related_title_block(next_clean))
                    break

    return unique_non_empty(collected)
