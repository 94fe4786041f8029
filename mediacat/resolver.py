#!/usr/bin/env python3
"""
Multi-tier metadata resolution

MatchResolver walks an ordered list of strategies and stops at the first
one whose confidence meets its own threshold:

    exact        primary source, title + year + kind     >= 0.85
    fuzzy        primary source, title variants          >= 0.6
    ai-enhanced  recognizer, optional re-search          >= 0.4
    web          free-text search                        >= 0.4

Nothing below 0.4 is ever accepted. A collaborator error inside a tier
fails that tier only; the chain moves on to the next one.
"""

import asyncio
import inspect
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from mediacat.constants import (
    EXACT_THRESHOLD, FUZZY_THRESHOLD, ACCEPTANCE_FLOOR, AI_RECOGNIZER_FLOOR,
    AI_RESEARCH_THRESHOLD, AI_BONUS, AI_BONUS_CAP
)
from mediacat.models import CatalogItem, MatchCandidate, MetadataUpdate, ResolutionResult
from mediacat.similarity import find_best_match

logger = logging.getLogger(__name__)


async def call_collaborator(fn, *args):
    """Await coroutine functions directly, run blocking ones on a worker thread"""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await asyncio.to_thread(fn, *args)


def known_kind(kind: Optional[str]) -> Optional[str]:
    return kind if kind in ('movie', 'tv') else None


def item_file_context(item: CatalogItem) -> Tuple[str, str]:
    """(filename, path) the recognizer should look at for this item"""
    path = item.episodes[0].path if item.episodes else item.primary_path
    return Path(path).name, path


def candidate_metadata(candidate: MatchCandidate, source: str) -> MetadataUpdate:
    """Metadata from the search hit alone, used when details can't be fetched"""
    return MetadataUpdate(
        title=candidate.title,
        original_title=candidate.original_title,
        year=candidate.year,
        kind=candidate.kind,
        overview=candidate.payload.get('overview'),
        poster_ref=candidate.payload.get('poster'),
        external_id=candidate.source_id,
        source=source,
    )


def title_variants(title: str) -> List[str]:
    """Special characters stripped, last word dropped, first two words"""
    words = title.split()
    variants = [
        ' '.join(re.sub(r'[^\w\s]', '', title).split()),
        ' '.join(words[:-1]),
        ' '.join(words[:2]),
    ]
    unique = []
    for variant in variants:
        if variant and variant != title and variant not in unique:
            unique.append(variant)
    return unique


@dataclass
class TierOutcome:
    confidence: float
    metadata: MetadataUpdate


class ResolutionStrategy:
    """One tier of the resolver chain"""
    name = 'base'
    threshold = ACCEPTANCE_FLOOR

    async def attempt(self, item: CatalogItem) -> Optional[TierOutcome]:
        raise NotImplementedError


class PrimarySourceStrategy(ResolutionStrategy):
    """Shared search/score/details plumbing for tiers that query the primary source"""

    def __init__(self, source):
        self.source = source

    async def best_candidate(self, query: str, year: Optional[int], kind: Optional[str],
                             score_title: str, score_year: Optional[int],
                             score_kind: Optional[str]) -> Optional[MatchCandidate]:
        candidates = await call_collaborator(self.source.search, query, year, kind)
        if not candidates:
            return None
        return find_best_match(candidates, score_title, score_year, score_kind)

    async def fetch_metadata(self, candidate: MatchCandidate) -> MetadataUpdate:
        details = await call_collaborator(self.source.details, candidate.source_id, candidate.kind)
        if details is None:
            logger.debug(f"No details for {candidate.source_id}, using search hit")
            return candidate_metadata(candidate, 'tmdb')
        if not details.kind:
            details.kind = candidate.kind
        return details


class ExactSearch(PrimarySourceStrategy):
    name = 'exact'
    threshold = EXACT_THRESHOLD

    async def attempt(self, item: CatalogItem) -> Optional[TierOutcome]:
        kind = known_kind(item.kind)
        best = await self.best_candidate(item.title, item.year, kind, item.title, item.year, item.kind)
        if best is None or best.score.confidence < self.threshold:
            return None
        return TierOutcome(best.score.confidence, await self.fetch_metadata(best))


class FuzzySearch(PrimarySourceStrategy):
    name = 'fuzzy'
    threshold = FUZZY_THRESHOLD

    async def attempt(self, item: CatalogItem) -> Optional[TierOutcome]:
        for variant in title_variants(item.title):
            # Kind-agnostic: the classifier may have guessed wrong
            best = await self.best_candidate(variant, None, None, item.title, item.year, item.kind)
            if best is not None and best.score.confidence >= self.threshold:
                logger.debug(f"Fuzzy variant '{variant}' matched '{best.title}'")
                return TierOutcome(best.score.confidence, await self.fetch_metadata(best))
        return None


class AiEnhanced(PrimarySourceStrategy):
    """
    Ask the recognizer what the file is. A confident recognition (> 0.5) is
    searched again on the primary source; a re-search reaching 0.6 earns a
    small bonus, otherwise the recognition itself becomes the metadata.
    """
    name = 'ai-enhanced'
    threshold = ACCEPTANCE_FLOOR

    def __init__(self, recognizer, source=None):
        super().__init__(source)
        self.recognizer = recognizer

    async def attempt(self, item: CatalogItem) -> Optional[TierOutcome]:
        filename, path = item_file_context(item)
        recognition = await call_collaborator(self.recognizer.recognize, filename, path)
        if recognition is None or recognition.confidence <= AI_RECOGNIZER_FLOOR:
            return None

        kind = known_kind(recognition.media_type)
        year = recognition.year or item.year
        if self.source is not None and recognition.clean_title and recognition.clean_title != item.title:
            try:
                best = await self.best_candidate(
                    recognition.clean_title, recognition.year, kind,
                    recognition.clean_title, year, kind
                )
            except Exception as e:
                logger.warning(f"Re-search for '{recognition.clean_title}' failed: {e}")
                best = None
            if best is not None and best.score.confidence >= AI_RESEARCH_THRESHOLD:
                confidence = min(AI_BONUS_CAP, best.score.confidence + AI_BONUS)
                return TierOutcome(confidence, await self.fetch_metadata(best))

        metadata = MetadataUpdate(
            title=recognition.clean_title,
            year=year,
            kind=kind or known_kind(item.kind),
            source='recognizer',
        )
        return TierOutcome(recognition.confidence, metadata)


class WebSearch(ResolutionStrategy):
    """Last resort: free-text search through a web search collaborator"""
    name = 'web'
    threshold = ACCEPTANCE_FLOOR

    def __init__(self, web):
        self.web = web

    async def attempt(self, item: CatalogItem) -> Optional[TierOutcome]:
        query = f"{item.title} {item.year or ''}".strip()
        candidates = await call_collaborator(self.web.search, query)
        if not candidates:
            return None
        best = find_best_match(candidates, item.title, item.year, item.kind)
        if best is None or best.score.confidence < self.threshold:
            return None

        metadata = None
        if hasattr(self.web, 'details'):
            metadata = await call_collaborator(self.web.details, best.source_id)
        if metadata is None:
            metadata = candidate_metadata(best, 'web')
        if not metadata.kind:
            metadata.kind = best.kind
        return TierOutcome(best.score.confidence, metadata)


class MatchResolver:
    """Runs strategies in order; first one to meet its threshold wins"""

    def __init__(self, strategies: List[ResolutionStrategy], acceptance_floor: float = ACCEPTANCE_FLOOR):
        self.strategies = list(strategies)
        self.acceptance_floor = acceptance_floor

    async def resolve(self, item: CatalogItem) -> ResolutionResult:
        started = time.monotonic()
        errors = []

        for strategy in self.strategies:
            try:
                outcome = await strategy.attempt(item)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{strategy.name} search failed for '{item.title}': {e}")
                errors.append(f"{strategy.name}: {e}")
                continue

            if outcome is None:
                continue
            if outcome.confidence < max(strategy.threshold, self.acceptance_floor):
                logger.debug(f"{strategy.name}: '{item.title}' below threshold ({outcome.confidence:.2f})")
                continue

            logger.info(f"Resolved '{item.title}' via {strategy.name} ({outcome.confidence:.2f})")
            return ResolutionResult(
                item_id=item.id,
                success=True,
                confidence=outcome.confidence,
                method=strategy.name,
                metadata=outcome.metadata,
                processing_time=time.monotonic() - started,
            )

        logger.info(f"No match for '{item.title}'")
        return ResolutionResult(
            item_id=item.id,
            success=False,
            confidence=0.0,
            method='failed',
            error='; '.join(errors) or 'All search methods failed to meet confidence threshold',
            processing_time=time.monotonic() - started,
        )


def build_default_resolver(primary=None, recognizer=None, web=None) -> MatchResolver:
    """exact -> fuzzy -> ai-enhanced -> web, skipping tiers whose collaborator is missing"""
    strategies: List[ResolutionStrategy] = []
    if primary is not None:
        strategies.append(ExactSearch(primary))
        strategies.append(FuzzySearch(primary))
    if recognizer is not None:
        strategies.append(AiEnhanced(recognizer, primary))
    if web is not None:
        strategies.append(WebSearch(web))
    return MatchResolver(strategies)
