#!/usr/bin/env python3
"""
Name recognizers for the AI-enhanced resolution tier

GeminiRecognizer asks a language model to clean a release name using the
file's path as context. HeuristicRecognizer is the offline stand-in: it
reads the same clues (filename, then the enclosing folders) with the
filename parser. Both return a Recognition; neither raises.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

import requests

from mediacat.classifier import is_season_dir
from mediacat.constants import TV_PATH_KEYWORDS, MOVIE_PATH_KEYWORDS
from mediacat.models import Recognition
from mediacat.parser import NameParser, strip_episode_markers

logger = logging.getLogger(__name__)

GEMINI_MODEL = 'gemini-2.0-flash-exp'
GEMINI_URL = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'

PROMPT_TEMPLATE = """You identify movies and TV series from media file names.

Filename: {filename}
Path: {path}

Tasks:
1. Identify the real movie or series title in the filename
2. Decide whether it is a movie (movie) or a TV series (tv)
3. Extract the release year if present
4. Drop technical tokens (720p, 1080p, 4K, x264, x265, HEVC, DTS, AAC, BluRay, WEB-DL)
   and release group tags in brackets
5. Rate your confidence between 0 and 1

Rules:
- S01E01, Season, Episode, 季, 集 usually mean a TV series
- A year without season/episode markers usually means a movie
- Keep the title's original spelling

Reply with JSON only:
{{"originalTitle": "...", "cleanTitle": "...", "mediaType": "movie|tv|unknown",
  "year": 2010, "confidence": 0.85, "alternativeNames": ["..."]}}
"""


def _coerce_year(value) -> Optional[int]:
    match = re.search(r'(19|20)\d{2}', str(value or ''))
    return int(match.group(0)) if match else None


class HeuristicRecognizer:
    """Offline recognizer built on the filename parser plus folder names"""

    def __init__(self, parser: Optional[NameParser] = None):
        self.parser = parser or NameParser()

    def _folder_guess(self, path: Optional[str]):
        """Parse the nearest folder that looks like a title ("Inception (2010)")"""
        if not path:
            return None, False
        in_season_dir = False
        for segment in reversed(Path(path).parent.parts):
            if is_season_dir(segment):
                in_season_dir = True
                continue
            words = set(re.split(r'[^a-z0-9]+', segment.lower())) - {''}
            if not words or words <= (TV_PATH_KEYWORDS | MOVIE_PATH_KEYWORDS | {'shows', 'media'}):
                continue
            parsed = self.parser.parse(segment)
            return parsed, in_season_dir
        return None, in_season_dir

    def recognize(self, filename: str, path: Optional[str] = None) -> Recognition:
        parsed = self.parser.parse(filename)
        title = strip_episode_markers(parsed.title)
        year = parsed.year
        confidence = 0.3 if title else 0.1

        folder, in_season_dir = self._folder_guess(path)
        alternatives = []
        if folder and folder.title:
            folder_title = strip_episode_markers(folder.title)
            if folder.year and folder_title:
                # A titled, dated folder is the strongest clue we have offline
                if title and title.lower() != folder_title.lower():
                    alternatives.append(title)
                title = folder_title
                year = year or folder.year
                confidence = 0.55
            elif folder_title and not title:
                title = folder_title

        if parsed.has_episode_marker or in_season_dir:
            media_type = 'tv'
        elif year:
            media_type = 'movie'
        else:
            media_type = 'unknown'

        return Recognition(
            clean_title=title or filename,
            media_type=media_type,
            year=year,
            confidence=confidence,
            original_title=filename,
            alternative_names=alternatives,
        )


class GeminiRecognizer:
    """Gemini-backed recognizer over the REST API"""

    def __init__(self, api_key: str, model: str = GEMINI_MODEL,
                 fallback: Optional[HeuristicRecognizer] = None):
        self.api_key = api_key
        self.model = model
        self.fallback = fallback or HeuristicRecognizer()

    def _fallback(self, filename: str, path: Optional[str]) -> Recognition:
        # Model unavailable: parser guess, but never trusted enough to re-search
        result = self.fallback.recognize(filename, path)
        result.confidence = min(result.confidence, 0.1)
        return result

    def _extract_json(self, text: str) -> dict:
        text = re.sub(r'```(?:json)?', '', text).strip()
        match = re.search(r'\{.*\}', text, re.DOTALL)
        if not match:
            raise ValueError("No JSON object in model reply")
        return json.loads(match.group(0))

    def recognize(self, filename: str, path: Optional[str] = None) -> Recognition:
        if not self.api_key:
            return self._fallback(filename, path)

        prompt = PROMPT_TEMPLATE.format(filename=filename, path=path or '(unknown)')
        try:
            response = requests.post(
                GEMINI_URL.format(model=self.model),
                params={'key': self.api_key},
                json={'contents': [{'parts': [{'text': prompt}]}]},
                timeout=30
            )
            response.raise_for_status()
            text = response.json()['candidates'][0]['content']['parts'][0]['text']
            parsed = self._extract_json(text)
        except requests.exceptions.Timeout:
            logger.warning(f"Gemini timeout for '{filename}'")
            return self._fallback(filename, path)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Gemini request failed for '{filename}': {e}")
            return self._fallback(filename, path)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Could not parse Gemini reply for '{filename}': {e}")
            return self._fallback(filename, path)

        clean_title = parsed.get('cleanTitle') or self.fallback.recognize(filename, path).clean_title
        media_type = parsed.get('mediaType')
        try:
            confidence = float(parsed.get('confidence', 0.5))
        except (TypeError, ValueError):
            confidence = 0.5
        alternatives = parsed.get('alternativeNames')

        result = Recognition(
            clean_title=clean_title,
            media_type=media_type if media_type in ('movie', 'tv') else 'unknown',
            year=_coerce_year(parsed.get('year')),
            confidence=max(0.0, min(1.0, confidence)),
            original_title=parsed.get('originalTitle') or filename,
            alternative_names=[str(a) for a in alternatives] if isinstance(alternatives, list) else [],
        )
        logger.debug(f"Gemini: '{filename}' → '{result.clean_title}' ({result.media_type}, {result.confidence:.2f})")
        return result
