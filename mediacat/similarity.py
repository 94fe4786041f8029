#!/usr/bin/env python3
"""
Candidate scoring for metadata matching

A candidate's score combines title similarity (normalized Levenshtein over
cleaned titles), year proximity, and media-kind agreement:

    total      = 0.6 * title + 0.3 * year + 0.1 * type
    confidence = min(1, total * 1.2)

All component scores are in [0, 1].
"""

import re
from typing import List, Optional

from mediacat.constants import (
    STOP_WORDS, TITLE_WEIGHT, YEAR_WEIGHT, TYPE_WEIGHT, CONFIDENCE_BOOST
)
from mediacat.models import MatchCandidate, MatchingScore

_STOP_WORDS_PATTERN = re.compile(r'\b(?:' + '|'.join(sorted(STOP_WORDS)) + r')\b')


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert/delete/substitute, all cost 1)"""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def clean_for_matching(title: str) -> str:
    """Lowercase, drop stop words and punctuation, collapse whitespace"""
    title = title.lower()
    title = _STOP_WORDS_PATTERN.sub('', title)
    title = re.sub(r'[^\w\s]', '', title)
    return ' '.join(title.split())


def title_similarity(a: str, b: str) -> float:
    """
    1 - normalized edit distance between cleaned titles

    Args:
        a: First title
        b: Second title

    Returns:
        Similarity in [0, 1]; 0 when both titles clean to nothing
    """
    clean_a = clean_for_matching(a or '')
    clean_b = clean_for_matching(b or '')
    longest = max(len(clean_a), len(clean_b))
    if longest == 0:
        return 0.0
    return 1.0 - levenshtein_distance(clean_a, clean_b) / longest


def year_match(item_year: Optional[int], candidate_year: Optional[int]) -> float:
    if not item_year or not candidate_year:
        return 0.5
    diff = abs(item_year - candidate_year)
    if diff <= 1:
        return 1.0
    return max(0.0, 1.0 - diff / 10)


def type_match(item_kind: Optional[str], candidate_kind: Optional[str]) -> float:
    known = ('movie', 'tv')
    if item_kind not in known or candidate_kind not in known:
        return 0.5
    return 1.0 if item_kind == candidate_kind else 0.0


def calculate_matching_score(item_title: str, item_year: Optional[int], item_kind: Optional[str],
                             candidate_title: str, candidate_year: Optional[int],
                             candidate_kind: Optional[str]) -> MatchingScore:
    title_score = title_similarity(item_title, candidate_title)
    year_score = year_match(item_year, candidate_year)
    type_score = type_match(item_kind, candidate_kind)
    total = TITLE_WEIGHT * title_score + YEAR_WEIGHT * year_score + TYPE_WEIGHT * type_score
    return MatchingScore(
        title_similarity=title_score,
        year_match=year_score,
        type_match=type_score,
        total_score=total,
        confidence=min(1.0, total * CONFIDENCE_BOOST),
    )


def score_candidate(candidate: MatchCandidate, title: str, year: Optional[int],
                    kind: Optional[str]) -> MatchingScore:
    """Score against the candidate's title, or its original title when that matches better"""
    score = calculate_matching_score(title, year, kind, candidate.title, candidate.year, candidate.kind)
    if candidate.original_title and candidate.original_title != candidate.title:
        alternate = calculate_matching_score(
            title, year, kind, candidate.original_title, candidate.year, candidate.kind
        )
        if alternate.total_score > score.total_score:
            score = alternate
    return score


def find_best_match(candidates: List[MatchCandidate], title: str, year: Optional[int],
                    kind: Optional[str]) -> Optional[MatchCandidate]:
    """Score every candidate in place; highest total wins, first occurrence breaks ties"""
    best = None
    for candidate in candidates:
        candidate.score = score_candidate(candidate, title, year, kind)
        if best is None or candidate.score.total_score > best.score.total_score:
            best = candidate
    return best
