#!/usr/bin/env python3
"""
File fingerprinting and identity reuse

A fingerprint is MD5 over the file size and its first 1 MiB, read through
the storage collaborator - cheap, and identical bytes give identical
fingerprints wherever the file lives. Only when the bytes can't be read
does it fall back to MD5 of path|size|mtime, prefixed 'm-' so the two
schemes never collide. Fingerprints are identity hints, not integrity
hashes.

Lookups check the local catalog first, then the community registry (cached
for 24 hours). Accepted, complete identifications are shared back to the
registry when confident enough.
"""

import hashlib
import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from mediacat.constants import (
    FINGERPRINT_PREFIX_BYTES, METADATA_FINGERPRINT_PREFIX, SUBMISSION_MIN_CONFIDENCE,
    LOCAL_MATCH_CONFIDENCE, HASH_CACHE_TTL
)
from mediacat.exceptions import MediaCatalogError
from mediacat.models import (
    CatalogItem, DuplicateGroup, Fingerprint, HashMatch, MetadataUpdate, RawFile,
    metadata_from_item
)
from mediacat.resolver import call_collaborator
from mediacat.storage import Storage
from mediacat.store import CatalogStore

logger = logging.getLogger(__name__)


def metadata_fingerprint(raw_file: RawFile) -> str:
    seed = f"{raw_file.path}|{raw_file.size}|{raw_file.modified_time or 0}"
    return METADATA_FINGERPRINT_PREFIX + hashlib.md5(seed.encode('utf-8')).hexdigest()


def content_fingerprint(size: int, head: bytes) -> str:
    digest = hashlib.md5()
    digest.update(str(size).encode('ascii'))
    digest.update(b':')
    digest.update(head)
    return digest.hexdigest()


class IdentityService:
    """Fingerprints files, reuses known identifications, reports duplicates"""

    def __init__(self, storage: Storage, store: CatalogStore, registry=None,
                 cache_ttl: float = HASH_CACHE_TTL, clock=time.monotonic):
        self.storage = storage
        self.store = store
        self.registry = registry
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._community_cache: Dict[str, Tuple[float, Optional[HashMatch]]] = {}

    async def fingerprint(self, raw_file: RawFile) -> Fingerprint:
        try:
            head = await call_collaborator(self.storage.read_file, raw_file.path, FINGERPRINT_PREFIX_BYTES)
        except (MediaCatalogError, OSError) as e:
            logger.debug(f"Falling back to metadata fingerprint for {raw_file.path}: {e}")
            return Fingerprint(value=metadata_fingerprint(raw_file), strategy='metadata')
        return Fingerprint(value=content_fingerprint(raw_file.size, head), strategy='content')

    async def _community_lookup(self, value: str) -> Optional[HashMatch]:
        cached = self._community_cache.get(value)
        if cached and self.clock() - cached[0] < self.cache_ttl:
            return cached[1]
        try:
            match = await call_collaborator(self.registry.lookup, value)
        except Exception as e:
            logger.warning(f"Hash registry lookup failed for {value}: {e}")
            return None
        self._community_cache[value] = (self.clock(), match)
        return match

    def _apply_community(self, item: CatalogItem, match: HashMatch):
        """Fill an incomplete local record from a community match"""
        if item.is_enriched():
            # Keep our own identification, borrow the descriptive fields
            update = MetadataUpdate(
                overview=match.metadata.overview,
                genres=match.metadata.genres,
                rating=match.metadata.rating,
                poster_ref=match.metadata.poster_ref,
                backdrop_ref=match.metadata.backdrop_ref,
                external_id=match.metadata.external_id,
            )
            self.store.apply_metadata(item.id, update, item.confidence, item.match_method or 'community')
        else:
            self.store.apply_metadata(item.id, match.metadata, match.confidence, 'community')
        logger.info(f"Community match filled '{item.title}' → '{match.metadata.title}'")

    async def lookup(self, fingerprint: str, exclude_item_id: Optional[str] = None) -> Optional[HashMatch]:
        """
        Local catalog first (another resolved item with the same fingerprint),
        then the community registry. A community hit is written into every
        local item carrying this fingerprint whose metadata is incomplete.
        """
        known = [
            item for item in self.store.get_by_fingerprint(fingerprint)
            if item.id != exclude_item_id and item.is_enriched()
        ]
        if known:
            best = max(known, key=lambda item: item.confidence)
            return HashMatch(
                fingerprint=fingerprint,
                source='local',
                metadata=metadata_from_item(best),
                confidence=LOCAL_MATCH_CONFIDENCE,
                media_id=best.id,
            )

        if self.registry is None:
            return None
        match = await self._community_lookup(fingerprint)
        if match is None:
            return None

        for item in self.store.get_by_fingerprint(fingerprint):
            if not item.has_complete_metadata():
                self._apply_community(item, match)
        return match

    async def submit(self, fingerprint: str, item: CatalogItem, confidence: float) -> bool:
        """Share an identification; only confident, complete ones qualify"""
        if self.registry is None:
            return False
        if confidence < SUBMISSION_MIN_CONFIDENCE or not item.has_complete_metadata():
            logger.debug(f"Not submitting '{item.title}' (confidence {confidence:.2f})")
            return False
        try:
            return bool(await call_collaborator(
                self.registry.submit, fingerprint, metadata_from_item(item), confidence
            ))
        except Exception as e:
            logger.warning(f"Hash submission failed for '{item.title}': {e}")
            return False

    def find_duplicates(self) -> List[DuplicateGroup]:
        return self.store.duplicate_fingerprints()

    def _source_file(self, item: CatalogItem, raw_by_path: Dict[str, RawFile]) -> RawFile:
        path = item.episodes[0].path if item.episodes else item.primary_path
        if path in raw_by_path:
            return raw_by_path[path]
        return RawFile(path=path, display_name=Path(path).name, size=item.size)

    async def process_items(self, items: Iterable[CatalogItem],
                            raw_files: Iterable[RawFile] = ()) -> Dict[str, int]:
        """
        Fingerprint each item, reuse known identifications, share new ones.

        Series are fingerprinted by their first episode. Errors are logged
        per item and never stop the sweep.
        """
        raw_by_path = {raw.path: raw for raw in raw_files}
        stats = {'total': 0, 'fingerprinted': 0, 'matched': 0, 'submitted': 0, 'errors': 0}

        for item in items:
            stats['total'] += 1
            try:
                fingerprint = await self.fingerprint(self._source_file(item, raw_by_path))
                fingerprint.media_id = item.id
                fingerprint.title = item.title
                self.store.upsert_fingerprint(fingerprint, item.id)
                stats['fingerprinted'] += 1

                match = await self.lookup(fingerprint.value, exclude_item_id=item.id)
                current = self.store.get_item(item.id)
                if match and match.source == 'local' and not current.is_enriched():
                    current = self.store.apply_metadata(item.id, match.metadata, match.confidence, 'local-hash')
                    stats['matched'] += 1
                elif match and match.source == 'community':
                    current = self.store.get_item(item.id)
                    stats['matched'] += 1

                if current.is_enriched() and current.match_method not in ('community', 'local-hash'):
                    if await self.submit(fingerprint.value, current, current.confidence):
                        stats['submitted'] += 1
            except Exception as e:
                stats['errors'] += 1
                logger.warning(f"Identity processing failed for '{item.title}': {e}")

        logger.info(
            f"Identity sweep: {stats['fingerprinted']}/{stats['total']} fingerprinted, "
            f"{stats['matched']} matched, {stats['submitted']} submitted"
        )
        return stats
