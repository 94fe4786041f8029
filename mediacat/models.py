#!/usr/bin/env python3
"""
Data containers shared across the scan pipeline
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from mediacat.constants import MEDIA_KINDS


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RawFile:
    """A file (or directory) as reported by the storage provider"""
    path: str
    display_name: str
    size: int = 0
    modified_time: Optional[float] = None  # POSIX timestamp
    is_directory: bool = False


@dataclass
class ParsedName:
    """Structured guess extracted from a filename"""
    title: str
    year: Optional[int] = None
    resolution: Optional[str] = None
    source_tag: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    episode_title: Optional[str] = None  # text after an S01E02-style marker

    @property
    def has_episode_marker(self) -> bool:
        return self.season is not None and self.episode is not None


@dataclass
class Episode:
    path: str
    season: int
    episode: int
    name: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'path': self.path, 'season': self.season, 'episode': self.episode, 'name': self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Episode':
        return cls(
            path=data['path'],
            season=int(data['season']),
            episode=int(data['episode']),
            name=data.get('name') or '',
        )


@dataclass
class MetadataUpdate:
    """
    Partial update for a CatalogItem.

    Every field is optional; merge_metadata() copies the non-empty ones over
    the item's current values.
    """
    title: Optional[str] = None
    original_title: Optional[str] = None
    year: Optional[int] = None
    kind: Optional[str] = None
    overview: Optional[str] = None
    genres: Optional[List[str]] = None
    rating: Optional[float] = None
    poster_ref: Optional[str] = None
    backdrop_ref: Optional[str] = None
    external_id: Optional[str] = None
    source: Optional[str] = None  # tmdb / omdb / recognizer / community

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MetadataUpdate':
        known = {k: data.get(k) for k in cls.__dataclass_fields__}
        if known.get('year') is not None:
            try:
                known['year'] = int(str(known['year'])[:4])
            except ValueError:
                known['year'] = None
        if known.get('rating') is not None:
            try:
                known['rating'] = float(known['rating'])
            except (TypeError, ValueError):
                known['rating'] = None
        if known.get('external_id') is not None:
            known['external_id'] = str(known['external_id'])
        if known.get('kind') is not None and known['kind'] not in MEDIA_KINDS:
            known['kind'] = None
        return cls(**known)


@dataclass
class CatalogItem:
    """The unit of identification and persistence (a movie or a grouped series)"""
    id: str
    title: str
    kind: str                       # movie / tv / unknown
    primary_path: str
    year: Optional[int] = None
    episodes: List[Episode] = field(default_factory=list)  # tv only
    poster_ref: Optional[str] = None
    overview_ref: Optional[str] = None
    backdrop_ref: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    rating: Optional[float] = None
    fingerprint: Optional[str] = None
    external_id: Optional[str] = None
    original_title: Optional[str] = None
    confidence: float = 0.0         # confidence of the accepted match, 0 when unresolved
    match_method: Optional[str] = None
    size: int = 0
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def is_enriched(self) -> bool:
        return self.confidence > 0

    def has_complete_metadata(self) -> bool:
        """Title, year, a definite kind, and an overview or external id"""
        return bool(
            self.title and
            self.year and
            self.kind in ('movie', 'tv') and
            (self.overview_ref or self.external_id)
        )

    def snapshot(self) -> 'CatalogItem':
        return copy.deepcopy(self)


def merge_metadata(item: CatalogItem, update: MetadataUpdate) -> CatalogItem:
    """
    Apply a MetadataUpdate to a copy of item.

    Field precedence: a non-null, non-empty value in the update overrides the
    item's value; anything the update leaves empty is kept from the item.
    """
    changes: Dict[str, Any] = {}
    if update.title:
        changes['title'] = update.title
    if update.original_title:
        changes['original_title'] = update.original_title
    if update.year:
        changes['year'] = update.year
    if update.kind in ('movie', 'tv'):
        changes['kind'] = update.kind
    if update.overview:
        changes['overview_ref'] = update.overview
    if update.genres:
        changes['genres'] = list(update.genres)
    if update.rating is not None:
        changes['rating'] = update.rating
    if update.poster_ref:
        changes['poster_ref'] = update.poster_ref
    if update.backdrop_ref:
        changes['backdrop_ref'] = update.backdrop_ref
    if update.external_id:
        changes['external_id'] = update.external_id
    changes['updated_at'] = utc_now()
    merged = replace(item, **changes)
    merged.episodes = list(item.episodes)
    return merged


def metadata_from_item(item: CatalogItem) -> MetadataUpdate:
    return MetadataUpdate(
        title=item.title,
        original_title=item.original_title,
        year=item.year,
        kind=item.kind,
        overview=item.overview_ref,
        genres=list(item.genres) or None,
        rating=item.rating,
        poster_ref=item.poster_ref,
        backdrop_ref=item.backdrop_ref,
        external_id=item.external_id,
    )


@dataclass
class ResolutionTask:
    item_id: str
    item: CatalogItem
    priority: str = 'medium'        # high / medium / low
    attempts: int = 0
    max_attempts: int = 3
    sequence: int = 0               # assigned by the scheduler on first submit


@dataclass
class ResolutionResult:
    item_id: str
    success: bool
    confidence: float = 0.0
    method: str = 'failed'          # exact / fuzzy / ai-enhanced / web / failed
    metadata: Optional[MetadataUpdate] = None
    error: Optional[str] = None
    processing_time: float = 0.0


@dataclass
class MatchingScore:
    title_similarity: float
    year_match: float
    type_match: float
    total_score: float
    confidence: float


@dataclass
class MatchCandidate:
    """A metadata-source search hit, scored against the item being resolved"""
    source_id: str
    title: str
    year: Optional[int] = None
    kind: Optional[str] = None
    original_title: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    score: Optional[MatchingScore] = None


@dataclass
class Recognition:
    """A recognizer's guess at what a filename is; advisory only"""
    clean_title: str
    media_type: str = 'unknown'     # movie / tv / unknown
    year: Optional[int] = None
    confidence: float = 0.0
    original_title: Optional[str] = None
    alternative_names: List[str] = field(default_factory=list)


@dataclass
class Fingerprint:
    value: str
    media_id: Optional[str] = None
    title: Optional[str] = None
    strategy: str = 'content'       # content (byte prefix) / metadata (path+size+mtime)


@dataclass
class HashMatch:
    fingerprint: str
    source: str                     # local / community
    metadata: MetadataUpdate
    confidence: float
    media_id: Optional[str] = None


@dataclass
class DuplicateGroup:
    fingerprint: str
    items: List[CatalogItem]


@dataclass
class ScanStatus:
    phase: str = 'idle'
    current: int = 0
    total: int = 0
    current_item: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    start_time: Optional[float] = None          # time.monotonic() at scan start
    started_at: Optional[str] = None            # wall clock, for reports
    estimated_time_remaining: Optional[float] = None  # seconds
    is_scanning: bool = False
    items_resolved: int = 0
    items_failed: int = 0
    duplicates: List[DuplicateGroup] = field(default_factory=list)

    def snapshot(self) -> 'ScanStatus':
        return copy.deepcopy(self)
