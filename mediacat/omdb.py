#!/usr/bin/env python3
"""
OMDb API client with persistent JSON caching

Used as the web-search fallback: free-text search (the `s=` endpoint) plus a
by-id lookup to fill in plot, genres and rating for the chosen hit.
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Optional, Dict, List

import requests

from mediacat.models import MatchCandidate, MetadataUpdate

logger = logging.getLogger(__name__)

OMDB_KINDS = {'movie': 'movie', 'series': 'tv', 'episode': 'tv'}


def _na(value: Optional[str]) -> Optional[str]:
    """OMDb reports missing fields as 'N/A'"""
    if not value or value == 'N/A':
        return None
    return value


def _first_year(value: Optional[str]) -> Optional[int]:
    # "2019", "2019–2021", "2019–"
    match = re.match(r'\s*(\d{4})', value or '')
    return int(match.group(1)) if match else None


class OMDbClient:
    """Interface to the Open Movie Database API with persistent caching"""

    def __init__(self, api_key: str, cache_path: Path):
        self.api_key = api_key
        self.base_url = "http://www.omdbapi.com/"
        self.cache_path = cache_path
        self.cache = self._load_cache()
        self.cache_hits = 0
        self.cache_misses = 0
        self._lock = threading.Lock()

    def _load_cache(self) -> Dict:
        """Load cache from JSON file"""
        if self.cache_path.exists():
            try:
                with open(self.cache_path, 'r', encoding='utf-8') as f:
                    cache = json.load(f)
                logger.info(f"Loaded OMDb cache with {len(cache)} entries")
                return cache
            except Exception as e:
                logger.warning(f"Could not load OMDb cache: {e}. Starting fresh.")
                return {}
        return {}

    def _save_cache(self):
        """Save cache to JSON file"""
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.cache_path, 'w', encoding='utf-8') as f:
                json.dump(self.cache, f, indent=2, ensure_ascii=False)

            logger.debug(f"Saved OMDb cache with {len(self.cache)} entries")
        except Exception as e:
            logger.error(f"Could not save OMDb cache: {e}")

    def _request(self, params: Dict, label: str):
        """Returns (data, cacheable); data is None when OMDb found nothing or the call failed"""
        try:
            response = requests.get(
                self.base_url,
                params=dict(params, apikey=self.api_key),
                timeout=10
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            logger.warning(f"OMDb API timeout for '{label}'")
            return None, False
        except requests.exceptions.HTTPError as e:
            logger.warning(f"OMDb API HTTP error for '{label}': {e}")
            return None, False
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"OMDb API error for '{label}': {e}")
            return None, False

        if data.get('Response') == 'False':
            logger.debug(f"No OMDb results for '{label}': {data.get('Error', 'Unknown error')}")
            return None, True
        return data, True

    def _cached(self, cache_key: str, params: Dict, label: str):
        with self._lock:
            if cache_key in self.cache:
                self.cache_hits += 1
                logger.debug(f"OMDb cache hit: {label}")
                return self.cache[cache_key]
            self.cache_misses += 1

        logger.debug(f"OMDb cache miss: {label} - querying OMDb")
        data, cacheable = self._request(params, label)
        if cacheable:
            with self._lock:
                self.cache[cache_key] = data
                self._save_cache()
        return data

    def search(self, query: str) -> List[MatchCandidate]:
        """Free-text search; a trailing year in the query becomes the year filter"""
        if not self.api_key or not query.strip():
            return []

        params = {'s': query.strip()}
        match = re.match(r'^(.*\S)\s+(\d{4})$', query.strip())
        if match:
            params = {'s': match.group(1), 'y': match.group(2)}

        data = self._cached(f"search|{query.strip()}", params, query)
        if not data:
            return []

        candidates = []
        for hit in data.get('Search', []):
            kind = OMDB_KINDS.get(hit.get('Type'))
            if not kind or not hit.get('imdbID'):
                continue
            candidates.append(MatchCandidate(
                source_id=hit['imdbID'],
                title=hit.get('Title', ''),
                year=_first_year(hit.get('Year')),
                kind=kind,
                payload={'poster': _na(hit.get('Poster'))},
            ))
        return candidates

    def details(self, imdb_id: str) -> Optional[MetadataUpdate]:
        """Full record for an IMDb id"""
        if not self.api_key:
            return None

        data = self._cached(f"id|{imdb_id}", {'i': imdb_id, 'plot': 'short'}, imdb_id)
        if not data:
            return None

        genres = [g.strip() for g in (_na(data.get('Genre')) or '').split(',') if g.strip()]
        rating = _na(data.get('imdbRating'))
        result = MetadataUpdate(
            title=_na(data.get('Title')),
            year=_first_year(data.get('Year')),
            kind=OMDB_KINDS.get(data.get('Type')),
            overview=_na(data.get('Plot')),
            genres=genres or None,
            rating=float(rating) if rating else None,
            poster_ref=_na(data.get('Poster')),
            external_id=imdb_id,
            source='omdb',
        )
        logger.info(f"OMDb: {imdb_id} → '{result.title}' ({result.year})")
        return result

    def get_cache_stats(self) -> Dict:
        """Get cache performance statistics"""
        total = self.cache_hits + self.cache_misses
        hit_rate = (self.cache_hits / total * 100) if total > 0 else 0

        return {
            'hits': self.cache_hits,
            'misses': self.cache_misses,
            'total_queries': total,
            'hit_rate': hit_rate,
            'cache_size': len(self.cache)
        }
