#!/usr/bin/env python3
"""
Media classification and series grouping

Turns storage listings into CatalogItems: each movie (or unidentifiable
file) becomes its own item, episode files are grouped into one tv item per
series.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fuzzywuzzy import fuzz

from mediacat.constants import (
    TV_PATH_KEYWORDS, MOVIE_PATH_KEYWORDS, SEASON_DIR_PATTERN,
    SERIES_MATCH_RATIO, PRIORITY_RANK, LARGE_FILE_BYTES
)
from mediacat.exceptions import ClassificationError
from mediacat.models import RawFile, ParsedName, CatalogItem, Episode
from mediacat.parser import NameParser, strip_episode_markers

logger = logging.getLogger(__name__)

KIND_PRIORITY = {'movie': 'high', 'tv': 'medium', 'unknown': 'low'}


def make_item_id(primary_path: str, series_key: Optional[str] = None) -> str:
    """
    Deterministic item id.

    Files hash their path; series hash their directory plus the normalized
    series key so two shows sharing one folder stay distinct.
    """
    if series_key is None:
        return 'm-' + hashlib.sha1(primary_path.encode('utf-8')).hexdigest()[:16]
    seed = f"{primary_path}#{series_key}"
    return 'tv-' + hashlib.sha1(seed.encode('utf-8')).hexdigest()[:16]


def item_priority(item: CatalogItem) -> str:
    """Movies first, then series, then unknowns; very large files move up one class"""
    priority = KIND_PRIORITY.get(item.kind, 'low')
    if item.size > LARGE_FILE_BYTES:
        rank = max(0, PRIORITY_RANK[priority] - 1)
        priority = next(name for name, r in PRIORITY_RANK.items() if r == rank)
    return priority


def is_season_dir(name: str) -> bool:
    return bool(re.match(SEASON_DIR_PATTERN, name.strip(), re.IGNORECASE))


def normalize_series_key(title: str) -> str:
    return ' '.join(re.sub(r'[^\w]+', ' ', title.lower()).split())


class MediaClassifier:
    """Label a file as movie, tv, or unknown"""

    def __init__(self, parser: Optional[NameParser] = None):
        self.parser = parser or NameParser()

    def _path_kind(self, raw_file: RawFile) -> Optional[str]:
        # Nearest directory decides when segments disagree
        for segment in reversed(Path(raw_file.path).parent.parts):
            if is_season_dir(segment):
                return 'tv'
            words = set(re.split(r'[^a-z0-9]+', segment.lower()))
            if words & TV_PATH_KEYWORDS:
                return 'tv'
            if words & MOVIE_PATH_KEYWORDS:
                return 'movie'
        return None

    def classify(self, raw_file: RawFile, parsed: Optional[ParsedName] = None) -> str:
        """
        Classification priority:
        1. Directory keywords (tv/series/season/episode, movie/film)
        2. Season/episode marker in the filename -> tv
        3. Year without a marker -> movie
        4. unknown
        """
        if raw_file.is_directory:
            raise ClassificationError(f"Not a file: {raw_file.path}")

        kind = self._path_kind(raw_file)
        if kind:
            return kind

        if parsed is None:
            parsed = self.parser.parse(raw_file.display_name)
        if parsed.has_episode_marker:
            return 'tv'
        if parsed.year:
            return 'movie'
        return 'unknown'


class SeriesGrouper:
    """Group episode files into one CatalogItem per series"""

    def series_dir(self, path: str) -> Path:
        """Nearest parent directory that isn't a season folder"""
        parent = Path(path).parent
        while is_season_dir(parent.name) and parent.parent != parent:
            parent = parent.parent
        return parent

    def group(self, files: List[Tuple[RawFile, ParsedName]]) -> List[CatalogItem]:
        groups: Dict[Tuple[str, str], List[Tuple[RawFile, ParsedName]]] = {}
        titles: Dict[Tuple[str, str], str] = {}
        keys_by_dir: Dict[str, List[str]] = {}

        for raw_file, parsed in files:
            directory = self.series_dir(raw_file.path)
            title = strip_episode_markers(parsed.title) or directory.name
            key = normalize_series_key(title)

            # Near-identical titles in one folder are the same show
            # ("Show" vs "Show!" vs "The Show")
            known = keys_by_dir.setdefault(str(directory), [])
            for existing in known:
                if existing == key or fuzz.ratio(existing, key) > SERIES_MATCH_RATIO:
                    key = existing
                    break
            else:
                known.append(key)
                titles[(str(directory), key)] = title

            groups.setdefault((str(directory), key), []).append((raw_file, parsed))

        items = []
        for (directory, key), members in groups.items():
            items.append(self._build_series(directory, key, titles[(directory, key)], members))
        return items

    def _build_series(self, directory: str, key: str, title: str,
                      members: List[Tuple[RawFile, ParsedName]]) -> CatalogItem:
        episodes: Dict[Tuple[int, int], Episode] = {}
        unnumbered = []
        for raw_file, parsed in members:
            if not parsed.has_episode_marker:
                unnumbered.append((raw_file, parsed))
                continue
            slot = (parsed.season, parsed.episode)
            if slot in episodes:
                logger.debug(f"Duplicate episode S{slot[0]:02d}E{slot[1]:02d} ignored: {raw_file.path}")
                continue
            episodes[slot] = Episode(
                path=raw_file.path,
                season=parsed.season,
                episode=parsed.episode,
                name=parsed.episode_title or raw_file.display_name,
            )

        # Files without markers are filed as specials (season 0) in path order
        specials = sorted(unnumbered, key=lambda member: member[0].path)
        next_special = max([e for s, e in episodes if s == 0], default=0)
        for raw_file, parsed in specials:
            next_special += 1
            episodes[(0, next_special)] = Episode(
                path=raw_file.path, season=0, episode=next_special, name=raw_file.display_name
            )

        years = [parsed.year for _, parsed in members if parsed.year]
        return CatalogItem(
            id=make_item_id(directory, key),
            title=title,
            kind='tv',
            primary_path=directory,
            year=years[0] if years else None,
            episodes=[episodes[slot] for slot in sorted(episodes)],
            size=sum(raw_file.size for raw_file, _ in members),
        )


class CatalogBuilder:
    """Convert raw storage listings into catalog items"""

    def __init__(self, parser: Optional[NameParser] = None,
                 classifier: Optional[MediaClassifier] = None,
                 grouper: Optional[SeriesGrouper] = None):
        self.parser = parser or NameParser()
        self.classifier = classifier or MediaClassifier(self.parser)
        self.grouper = grouper or SeriesGrouper()

    def build(self, raw_files: List[RawFile]) -> Tuple[List[CatalogItem], List[str]]:
        """
        Returns (items, errors). Movies and unknowns come first in discovery
        order, then one item per series. A file that can't be classified is
        skipped and reported in errors.
        """
        items: List[CatalogItem] = []
        episodes: List[Tuple[RawFile, ParsedName]] = []
        errors: List[str] = []

        for raw_file in raw_files:
            try:
                parsed = self.parser.parse(raw_file.display_name)
                if not parsed.title:
                    raise ClassificationError(f"No title in filename: {raw_file.display_name}")
                kind = self.classifier.classify(raw_file, parsed)
            except ClassificationError as e:
                logger.warning(f"Skipping {raw_file.path}: {e}")
                errors.append(f"{raw_file.path}: {e}")
                continue

            if kind == 'tv':
                episodes.append((raw_file, parsed))
                continue

            items.append(CatalogItem(
                id=make_item_id(raw_file.path),
                title=parsed.title,
                kind=kind,
                primary_path=raw_file.path,
                year=parsed.year,
                size=raw_file.size,
            ))

        items.extend(self.grouper.group(episodes))
        logger.info(f"Classified {len(raw_files)} files into {len(items)} items ({len(errors)} skipped)")
        return items, errors
