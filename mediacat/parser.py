#!/usr/bin/env python3
"""
Filename parser for extracting media metadata from release-style filenames

Handles scene releases (Title.Year.Resolution.Source-GROUP), fansub releases
([Group] Title - S01E02 [1080p]) and localized episode markers (第1季第2集).
"""

import re
from typing import Optional, Tuple, List

from mediacat.constants import (
    KNOWN_EXTENSIONS, RESOLUTION_TOKENS, SOURCE_TAGS, RELEASE_TAGS
)
from mediacat.models import ParsedName

Span = Tuple[int, int]

_OPEN = r'[\[(【（]'
_CLOSE = r'[\])】）]'

# Season/episode markers - order matters, first match wins
EPISODE_PATTERNS = [
    r'(?<![A-Za-z0-9])S(\d{1,2})[\s._-]?E(\d{1,3})(?![0-9])',            # S01E02, S01.E02
    r'(?<![A-Za-z])Season[\s._-]*(\d{1,2})[\s._-]*Episode[\s._-]*(\d{1,3})(?![0-9])',
    r'第\s*(\d{1,3})\s*季.{0,3}?第\s*(\d{1,4})\s*[集话話]',                    # 第1季第2集
    r'(?<![A-Za-z0-9])(\d{1,2})x(\d{2,3})(?![0-9])',                       # 1x02
]

# Season-only markers, stripped from series keys
SEASON_PATTERNS = [
    r'(?<![A-Za-z0-9])S\d{1,2}(?![A-Za-z0-9])',
    r'(?<![A-Za-z])Season[\s._-]*\d{1,2}(?![0-9])',
    r'第\s*\S{1,3}?\s*季',
]

BRACKETED_YEAR = _OPEN + r'\s*(19\d{2}|20\d{2})\s*' + _CLOSE
BARE_YEAR = r'(?<![0-9])(19\d{2}|20\d{2})(?![0-9])'

GROUP_SUFFIX = r'-([A-Za-z0-9]+)$'


def _token_pattern(tokens: List[str]) -> str:
    alternation = '|'.join(re.escape(t) for t in tokens)
    return r'(?<![A-Za-z0-9])(' + alternation + r')(?![A-Za-z0-9])'


RESOLUTION_PATTERN = _token_pattern(RESOLUTION_TOKENS)
SOURCE_PATTERN = _token_pattern(SOURCE_TAGS)
RELEASE_PATTERN = _token_pattern(RELEASE_TAGS)


def _search_episode(text: str) -> Optional[re.Match]:
    """Find the first season/episode marker, preferring a bracketed one"""
    for pattern in EPISODE_PATTERNS:
        match = re.search(_OPEN + r'\s*' + pattern + r'\s*' + _CLOSE, text, re.IGNORECASE)
        if match:
            return match
        match = re.search(pattern, text, re.IGNORECASE)
        if match:
            return match
    return None


def strip_episode_markers(text: str) -> str:
    """Remove every season/episode (and season-only) marker from text"""
    for pattern in EPISODE_PATTERNS + SEASON_PATTERNS:
        text = re.sub(_OPEN + r'\s*' + pattern + r'\s*' + _CLOSE, ' ', text, flags=re.IGNORECASE)
        text = re.sub(pattern, ' ', text, flags=re.IGNORECASE)
    text = ' '.join(text.split())
    return text.strip(' -._')


class NameParser:
    """Parse media metadata from a filename"""

    def _strip_extension(self, filename: str) -> str:
        name = filename.replace('\\', '/').rsplit('/', 1)[-1]
        if '.' in name:
            stem, ext = name.rsplit('.', 1)
            if ('.' + ext.lower()) in KNOWN_EXTENSIONS and stem:
                return stem
        return name

    def _clean_title(self, title: str) -> str:
        """Clean and normalize title text left over after token extraction"""
        # Fansub/site tags: 【字幕组】 anywhere, [Group] at the start
        title = re.sub(r'【[^】]*】', ' ', title)
        stripped = re.sub(r'^\s*\[[^\]]*\]\s*', '', title)
        if stripped.strip():
            title = stripped

        # Replace dots/underscores with spaces (scene release format)
        title = title.replace('.', ' ').replace('_', ' ')

        # Truncate at codec/audio/streaming tags. Non-alphanumeric boundaries so
        # short tags like "nf" or "aac" don't cut real words ("conformist", "isaac").
        title_lower = title.lower()
        for tag in RELEASE_TAGS:
            pattern = r'(?<![a-z0-9])' + re.escape(tag.replace('.', ' ')) + r'(?![a-z0-9])'
            match = re.search(pattern, title_lower)
            if match and match.start() > 0:
                title = title[:match.start()]
                title_lower = title_lower[:match.start()]

        # Parenthetical and bracket groups are metadata, unless they are all there is
        without_groups = re.sub(r'\s*' + _OPEN + r'[^\])】）]*' + _CLOSE, ' ', title)
        if without_groups.strip(' -'):
            title = without_groups
        else:
            title = re.sub(_OPEN + '|' + _CLOSE, ' ', title)

        # Corner brackets wrap the title itself
        title = re.sub(r'[「」『』]', ' ', title)

        # Trailing unclosed bracket fragment left by truncation, e.g. "Title [720p"
        title = re.sub(r'\s*[\[(][^\])]*$', '', title)

        title = ' '.join(title.split())
        return title.strip(' -')

    def _find_year(self, name: str, taken: List[Span]) -> Optional[re.Match]:
        """Bracketed year wins, otherwise the last bare year outside taken spans"""
        def free(match):
            return not any(match.start() < end and start < match.end() for start, end in taken)

        for match in re.finditer(BRACKETED_YEAR, name):
            if free(match):
                return match
        bare = [m for m in re.finditer(BARE_YEAR, name) if free(m)]
        return bare[-1] if bare else None

    def _build_title(self, name: str, spans: List[Span]) -> str:
        """Text before the earliest token; when nothing precedes it, the name minus all tokens"""
        if not spans:
            return self._clean_title(name)
        earliest = min(start for start, _ in spans)
        title = self._clean_title(name[:earliest])
        if title:
            return title
        remaining = name
        for start, end in sorted(spans, reverse=True):
            remaining = remaining[:start] + ' ' + remaining[end:]
        return self._clean_title(remaining)

    def parse(self, filename: str) -> ParsedName:
        """
        Extract metadata from a filename.

        Season/episode markers are located first (with their enclosing
        brackets) so "[S01E02]" leaves no stray brackets behind, then the
        year, resolution, and source tag. Nothing here raises; fields that
        can't be found are left empty.
        """
        name = self._strip_extension(filename)
        spans: List[Span] = []

        season = episode = None
        episode_match = _search_episode(name)
        if episode_match:
            numbers = [g for g in episode_match.groups() if g is not None]
            season, episode = int(numbers[0]), int(numbers[1])
            spans.append(episode_match.span())

        resolution = source_tag = None
        resolution_match = re.search(RESOLUTION_PATTERN, name, re.IGNORECASE)
        if resolution_match:
            resolution = resolution_match.group(1)
            spans.append(resolution_match.span())
        source_match = re.search(SOURCE_PATTERN, name, re.IGNORECASE)
        if source_match:
            source_tag = source_match.group(1)
            spans.append(source_match.span())

        # Trailing -GROUP only counts as a release group after release tokens
        release_ends = [m.end() for m in (resolution_match, source_match) if m]
        release_ends += [m.end() for m in re.finditer(RELEASE_PATTERN, name, re.IGNORECASE)]
        group_match = re.search(GROUP_SUFFIX, name)
        if group_match and release_ends and group_match.start() >= max(release_ends):
            spans.append(group_match.span())

        year = None
        year_match = self._find_year(name, spans)
        if year_match:
            title = self._build_title(name, spans + [year_match.span()])
            if title:
                year = int(year_match.group(1))
                spans.append(year_match.span())
            else:
                # "2012.mkv": the year is the whole title
                title = self._build_title(name, spans)
        else:
            title = self._build_title(name, spans)

        episode_title = None
        if episode_match:
            later = [start for start, _ in spans if start >= episode_match.end()]
            tail = name[episode_match.end():min(later) if later else len(name)]
            episode_title = self._clean_title(tail) or None

        return ParsedName(
            title=title,
            year=year,
            resolution=resolution,
            source_tag=source_tag,
            season=season,
            episode=episode,
            episode_title=episode_title,
        )
