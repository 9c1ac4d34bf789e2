"""
================================================================================
Extraction Pipeline - shared locator rules for native connectors
================================================================================
Every scraping connector follows the same shape:

  1. validate the URL (host allow-list, item-path pattern) before any request
  2. title:    og:title -> <title> -> strip site suffix -> prettified identifier
  3. cover:    og:image -> content-area <img> -> absolute URL -> unwrap proxies
  4. chapter:  scan chapter links, keep the highest number, then look around
               the winning link for an absolute or relative date
  5. aliases:  labelled blocks + embedded JSON -> Latin-alphabet filter

The helpers here implement the site-independent parts; connectors supply the
patterns, window sizes and suffixes.
================================================================================
"""

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Pattern, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup


# =============================================================================
# CHAPTER NUMBERS
# =============================================================================

CHAPTER_TOKEN = re.compile(r"\d+(?:[-.]\d+)?")


def parse_chapter_number(raw: str) -> Optional[float]:
    """
    Parse a chapter token into a float.

    "244" -> 244.0, "67.5" -> 67.5 and the URL-safe "67-5" -> 67.5.
    Returns None when there is no numeric token.
    """
    match = CHAPTER_TOKEN.search((raw or "").strip())
    if not match:
        return None
    token = match.group(0)
    if "-" not in token:
        return float(token)

    whole, fraction = token.split("-", 1)
    return float(whole) + int(fraction) / (10 ** len(fraction))


def format_chapter_number(chapter: float) -> str:
    """Shortest string form: 12.0 -> "12", 67.5 -> "67.5"."""
    if float(chapter).is_integer():
        return str(int(chapter))
    return repr(float(chapter))


# =============================================================================
# DATES
# =============================================================================

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

ABSOLUTE_DATE = re.compile(
    r"\b(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?"
    r"|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\.?\s+"
    r"(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})"
    r"(?:,?\s+(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*([AaPp])\.?[Mm]\.?)?",
    re.IGNORECASE,
)

_RELATIVE_UNIT = r"(?:minute|min|hour|hr|day|week|month|year)s?"
RELATIVE_DATE = re.compile(
    r"\bjust\s+now\b"
    r"|(?:\b\d+\s*|\ban?\s+)" + _RELATIVE_UNIT +
    r"(?:[\s,]+(?:and\s+)?(?:\d+\s*|an?\s+)" + _RELATIVE_UNIT + r")*\s+ago\b",
    re.IGNORECASE,
)
_RELATIVE_PART = re.compile(r"(\d+|an?)\s*(minute|min|hour|hr|day|week|month|year)s?", re.IGNORECASE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _shift_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def parse_relative_time(raw: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    "31 minutes ago", "5 days, 23 hours ago", "just now" -> UTC datetime.

    Units accumulate, so "1 day 2 hours ago" is 26 hours before `now`.
    """
    text = (raw or "").replace("\u00a0", " ").strip().lower()
    if not text:
        return None
    now = now or utc_now()
    if "just now" in text:
        return now

    parts = _RELATIVE_PART.findall(text)
    if not parts:
        return None

    result = now
    for quantity_raw, unit in parts:
        quantity = 1 if quantity_raw in ("a", "an") else int(quantity_raw)
        if quantity <= 0:
            continue
        if unit in ("minute", "min"):
            result -= timedelta(minutes=quantity)
        elif unit in ("hour", "hr"):
            result -= timedelta(hours=quantity)
        elif unit == "day":
            result -= timedelta(days=quantity)
        elif unit == "week":
            result -= timedelta(weeks=quantity)
        elif unit == "month":
            result = _shift_months(result, -quantity)
        elif unit == "year":
            result = _shift_months(result, -12 * quantity)
    return result


def _absolute_from_match(match) -> Optional[datetime]:
    month = _MONTHS.get(match.group(1)[:3].lower())
    if not month:
        return None
    hour = minute = 0
    if match.group(4):
        hour = int(match.group(4)) % 12
        minute = int(match.group(5) or 0)
        if match.group(6).lower() == "p":
            hour += 12
    try:
        return datetime(int(match.group(3)), month, int(match.group(2)), hour, minute, tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_absolute_date(raw: str) -> Optional[datetime]:
    """"Jan 12, 2026", "February 3rd 2026", "Feb 3, 2026 4:05 PM" -> UTC datetime."""
    match = ABSOLUTE_DATE.search((raw or "").replace("\u00a0", " "))
    if not match:
        return None
    return _absolute_from_match(match)


ISO_FRACTION = re.compile(r"\.(\d+)(?=[+-]\d{2}:\d{2}$|$)")


def parse_iso_datetime(raw: str) -> Optional[datetime]:
    """RFC3339 / ISO-8601 timestamps and bare YYYY-MM-DD dates, normalized to UTC."""
    value = (raw or "").strip()
    if not value:
        return None
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    value = ISO_FRACTION.sub(lambda match: "." + (match.group(1) + "000000")[:6], value, count=1)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def find_date(text: str, now: Optional[datetime] = None, last: bool = False) -> Optional[datetime]:
    """
    First (or last) date expression in `text`, absolute or relative,
    ordered by position in the text.
    """
    found: List[Tuple[int, datetime]] = []
    for match in ABSOLUTE_DATE.finditer(text):
        parsed = _absolute_from_match(match)
        if parsed:
            found.append((match.start(), parsed))
    for match in RELATIVE_DATE.finditer(text):
        parsed = parse_relative_time(match.group(0), now)
        if parsed:
            found.append((match.start(), parsed))
    if not found:
        return None
    found.sort(key=lambda item: item[0])
    return found[-1][1] if last else found[0][1]


def date_near(
    body: str,
    start: int,
    end: int,
    after: int = 800,
    before: int = 500,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Date following a match (preferred), else the closest one preceding it."""
    following = find_date(body[end:end + after], now)
    if following:
        return following
    return find_date(body[max(0, start - before):start], now, last=True)


@dataclass
class ChapterRelease:
    """Highest chapter found on a page and its best-effort release time."""
    chapter: Optional[float] = None
    released_at: Optional[datetime] = None
    match_start: int = -1
    match_end: int = -1


def latest_chapter_release(
    body: str,
    pattern: Pattern,
    after: int = 800,
    before: int = 500,
    now: Optional[datetime] = None,
    group: int = 1,
) -> ChapterRelease:
    """
    Scan every `pattern` occurrence, keep the maximum chapter and attach the
    date found near that occurrence. Ties on the maximum keep the latest date.
    """
    now = now or utc_now()
    release = ChapterRelease()
    for match in pattern.finditer(body):
        number = parse_chapter_number(match.group(group))
        if number is None:
            continue
        if release.chapter is None or number > release.chapter:
            release = ChapterRelease(
                chapter=number,
                released_at=date_near(body, match.start(), match.end(), after, before, now),
                match_start=match.start(),
                match_end=match.end(),
            )
        elif number == release.chapter:
            candidate = date_near(body, match.start(), match.end(), after, before, now)
            if candidate and (release.released_at is None or candidate > release.released_at):
                release.released_at = candidate
    return release


# =============================================================================
# URLS & HOSTS
# =============================================================================

def host_allowed(host: str, allowed_hosts: Iterable[str]) -> bool:
    """Exact or subdomain match against the allow-list."""
    host = (host or "").strip().lower()
    if not host:
        return False
    for allowed in allowed_hosts:
        allowed = (allowed or "").strip().lower()
        if allowed and (host == allowed or host.endswith("." + allowed)):
            return True
    return False


def path_segments(path: str) -> List[str]:
    return [segment for segment in (path or "").split("/") if segment and segment != "."]


def absolute_url(base_url: str, raw: str) -> str:
    """Resolve `raw` against the site root; protocol-relative URLs become https."""
    value = (raw or "").strip()
    if not value:
        return ""
    if value.startswith("//"):
        return "https:" + value
    if value.startswith(("http://", "https://")):
        return value
    return urljoin(base_url.rstrip("/") + "/", value)


def unwrap_image_proxy(url: str, proxy_hosts: Iterable[str] = ()) -> str:
    """
    Image optimizer URLs such as /_next/image?url=<real>&w=640 are reduced to
    the underlying asset URL.
    """
    if not url:
        return ""
    parsed = urlparse(url)
    if parsed.path.rstrip("/") != "/_next/image":
        return url
    hosts = list(proxy_hosts)
    if hosts and not host_allowed(parsed.hostname or "", hosts):
        return url
    inner = parse_qs(parsed.query).get("url", [""])[0].strip()
    return inner or url


# =============================================================================
# TITLES & DOCUMENT LOCATORS
# =============================================================================

def make_soup(markup: str) -> BeautifulSoup:
    return BeautifulSoup(markup or "", "html.parser")


def meta_content(soup: BeautifulSoup, *keys: str) -> str:
    """Content of the first <meta property|name=key> that is non-empty."""
    for key in keys:
        for attr in ("property", "name", "itemprop"):
            tag = soup.find("meta", attrs={attr: key})
            if tag and (tag.get("content") or "").strip():
                return tag["content"].strip()
    return ""


def document_title(soup: BeautifulSoup) -> str:
    tag = soup.find("title")
    if not tag:
        return ""
    return " ".join(tag.get_text(" ", strip=True).split())


def strip_title_suffixes(title: str, suffixes: Iterable[str]) -> str:
    value = (title or "").strip()
    for suffix in suffixes:
        if suffix and value.lower().endswith(suffix.lower()):
            value = value[: -len(suffix)].strip()
    return value


def prettify_identifier(item_id: str, strip_dot_suffix: bool = False) -> str:
    """"solo-leveling" -> "Solo Leveling"; "one-piecee.dkw" -> "One Piecee" with strip_dot_suffix."""
    slug = item_id or ""
    if strip_dot_suffix and slug.find(".") > 0:
        slug = slug[:slug.find(".")]
    words = slug.replace("-", " ").split()
    if not words:
        return item_id
    return " ".join(word[:1].upper() + word[1:] for word in words)


def page_title(soup: BeautifulSoup, suffixes: Iterable[str] = (), fallback_id: str = "",
               strip_dot_suffix: bool = False) -> str:
    """og:title, then <title>, minus site boilerplate; falls back to the identifier."""
    suffixes = tuple(suffixes)
    for candidate in (meta_content(soup, "og:title", "twitter:title"), document_title(soup)):
        title = strip_title_suffixes(candidate, suffixes)
        if title:
            return title
    return prettify_identifier(fallback_id, strip_dot_suffix) if fallback_id else ""


def first_image_src(node) -> str:
    if node is None:
        return ""
    img = node if getattr(node, "name", None) == "img" else node.find("img")
    if img is None:
        return ""
    for attr in ("src", "data-src", "data-lazy-src"):
        value = (img.get(attr) or "").strip()
        if value:
            return value
    return ""


def collapse_text(text: str) -> str:
    return " ".join((text or "").replace("\u00a0", " ").split())


CHAPTER_TOLERANCE = 1e-9


def chapter_matches(number: Optional[float], chapter: float) -> bool:
    return number is not None and abs(number - chapter) < CHAPTER_TOLERANCE


def find_chapter_link(soup: BeautifulSoup, chapter: float, href_pattern: Pattern, group: int = 1) -> str:
    """href of the first anchor whose chapter number equals `chapter`."""
    for anchor in soup.find_all("a", href=True):
        match = href_pattern.search(anchor["href"])
        if match and chapter_matches(parse_chapter_number(match.group(group)), chapter):
            return anchor["href"]
    return ""
