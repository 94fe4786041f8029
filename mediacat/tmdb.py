#!/usr/bin/env python3
"""
TMDb API client with persistent JSON caching

Primary metadata source for the resolver: search by title (+year, +kind)
returns scored-later MatchCandidates, details by id returns a MetadataUpdate.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional, Dict, List

import requests

from mediacat.models import MatchCandidate, MetadataUpdate

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
MAX_SEARCH_RESULTS = 10


class TMDbClient:
    """Interface to The Movie Database API with persistent caching"""

    def __init__(self, api_key: str, cache_path: Path, language: str = 'en-US'):
        self.api_key = api_key
        self.base_url = "https://api.themoviedb.org/3"
        self.language = language
        self.cache_path = cache_path
        self.cache = self._load_cache()
        self.cache_hits = 0
        self.cache_misses = 0
        # Requests run on worker threads (asyncio.to_thread)
        self._lock = threading.Lock()

    def _load_cache(self) -> Dict:
        """Load cache from JSON file"""
        if self.cache_path.exists():
            try:
                with open(self.cache_path, 'r', encoding='utf-8') as f:
                    cache = json.load(f)
                logger.info(f"Loaded TMDb cache with {len(cache)} entries")
                return cache
            except Exception as e:
                logger.warning(f"Could not load cache: {e}. Starting fresh.")
                return {}
        return {}

    def _save_cache(self):
        """Save cache to JSON file"""
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.cache_path, 'w', encoding='utf-8') as f:
                json.dump(self.cache, f, indent=2, ensure_ascii=False)

            logger.debug(f"Saved TMDb cache with {len(self.cache)} entries")
        except Exception as e:
            logger.error(f"Could not save cache: {e}")

    def _cached(self, cache_key: str, fetch):
        """
        Return the cached value for cache_key, or call fetch() and cache it.

        fetch() returns (value, cacheable). "No results" is cached as None so
        repeated scans don't re-query hopeless titles; transport errors are not.
        """
        with self._lock:
            if cache_key in self.cache:
                self.cache_hits += 1
                logger.debug(f"Cache hit: {cache_key}")
                return self.cache[cache_key]
            self.cache_misses += 1

        logger.debug(f"Cache miss: {cache_key} - querying TMDb")
        value, cacheable = fetch()

        if cacheable:
            with self._lock:
                self.cache[cache_key] = value
                self._save_cache()
        return value

    def _get(self, endpoint: str, params: Dict) -> Dict:
        params = dict(params, api_key=self.api_key, language=self.language)
        response = requests.get(f"{self.base_url}{endpoint}", params=params, timeout=10)
        response.raise_for_status()
        return response.json()

    def search(self, title: str, year: Optional[int] = None,
               kind: Optional[str] = None) -> List[MatchCandidate]:
        """
        Search TMDb by title.

        kind 'movie' / 'tv' searches that catalogue (with the year filter);
        anything else uses the multi search and keeps movie and tv hits only.
        """
        if not self.api_key or not title:
            return []

        scope = kind if kind in ('movie', 'tv') else 'multi'
        cache_key = f"search|{scope}|{title}|{year if year else 'None'}"
        results = self._cached(cache_key, lambda: self._query_search(title, year, scope))
        return [self._to_candidate(r) for r in results or []]

    def _query_search(self, title: str, year: Optional[int], scope: str):
        """Make actual search request to TMDb"""
        params = {'query': title, 'include_adult': False}
        if year and scope == 'movie':
            params['year'] = year
        elif year and scope == 'tv':
            params['first_air_date_year'] = year

        try:
            data = self._get(f"/search/{scope}", params)
        except requests.exceptions.Timeout:
            logger.warning(f"TMDb API timeout for '{title}' ({year})")
            return None, False
        except requests.exceptions.HTTPError as e:
            logger.warning(f"TMDb API HTTP error for '{title}': {e}")
            return None, False
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"TMDb API error for '{title}': {e}")
            return None, False

        results = []
        for hit in data.get('results', []):
            media_type = hit.get('media_type', scope)
            if media_type not in ('movie', 'tv'):
                continue
            results.append({
                'id': hit.get('id'),
                'media_type': media_type,
                'title': hit.get('title') or hit.get('name') or '',
                'original_title': hit.get('original_title') or hit.get('original_name'),
                'date': hit.get('release_date') or hit.get('first_air_date') or '',
                'overview': hit.get('overview'),
                'poster_path': hit.get('poster_path'),
            })
            if len(results) >= MAX_SEARCH_RESULTS:
                break

        if not results:
            logger.debug(f"No TMDb results for '{title}' ({year})")
            return None, True
        return results, True

    def _to_candidate(self, hit: Dict) -> MatchCandidate:
        year = None
        if hit.get('date'):
            try:
                year = int(hit['date'][:4])
            except ValueError:
                pass
        return MatchCandidate(
            source_id=str(hit['id']),
            title=hit['title'],
            year=year,
            kind=hit['media_type'],
            original_title=hit.get('original_title'),
            payload=hit,
        )

    def details(self, source_id: str, kind: Optional[str]) -> Optional[MetadataUpdate]:
        """Full metadata (overview, genres, rating, images) for a TMDb id"""
        if not self.api_key:
            return None
        kind = 'tv' if kind == 'tv' else 'movie'
        cache_key = f"details|{kind}|{source_id}"
        data = self._cached(cache_key, lambda: self._query_details(source_id, kind))
        return MetadataUpdate.from_dict(data) if data else None

    def _query_details(self, source_id: str, kind: str):
        """Make actual details request to TMDb"""
        try:
            data = self._get(f"/{kind}/{source_id}", {})
        except requests.exceptions.Timeout:
            logger.warning(f"TMDb API timeout for {kind}/{source_id}")
            return None, False
        except requests.exceptions.HTTPError as e:
            logger.warning(f"TMDb API HTTP error for {kind}/{source_id}: {e}")
            return None, False
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.debug(f"TMDb API error for {kind}/{source_id}: {e}")
            return None, False

        release_date = data.get('release_date') or data.get('first_air_date') or ''
        result = {
            'title': data.get('title') or data.get('name'),
            'original_title': data.get('original_title') or data.get('original_name'),
            'year': release_date[:4] or None,
            'kind': kind,
            'overview': data.get('overview') or None,
            'genres': [g.get('name') for g in data.get('genres', []) if g.get('name')],
            'rating': data.get('vote_average'),
            'poster_ref': f"{IMAGE_BASE_URL}/w500{data['poster_path']}" if data.get('poster_path') else None,
            'backdrop_ref': f"{IMAGE_BASE_URL}/original{data['backdrop_path']}" if data.get('backdrop_path') else None,
            'external_id': str(data.get('id', source_id)),
            'source': 'tmdb',
        }
        logger.info(f"TMDb: {kind}/{source_id} → '{result['title']}' ({result['year']})")
        return result, True

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
