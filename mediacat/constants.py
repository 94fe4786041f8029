#!/usr/bin/env python3
"""
Shared constants for the media catalog scanner

Single source of truth for filename tokens, thresholds, and other constants.
DO NOT duplicate these lists in other modules - import from here instead.
"""

# =============================================================================
# FILE TYPES
# =============================================================================

VIDEO_EXTENSIONS = {
    '.mp4', '.mkv', '.avi', '.mov', '.wmv', '.m4v', '.flv', '.webm',
    '.ts', '.m2ts', '.mts', '.mpg', '.mpeg',
}

SUBTITLE_EXTENSIONS = {'.srt', '.ass', '.ssa', '.sub', '.idx', '.vtt'}

# Extensions stripped by the parser before title extraction
KNOWN_EXTENSIONS = VIDEO_EXTENSIONS | SUBTITLE_EXTENSIONS | {'.nfo'}

# =============================================================================
# FILENAME TOKENS
# =============================================================================

# Resolution tokens, matched case-insensitively and returned as written
RESOLUTION_TOKENS = ['2160p', '1080p', '1080i', '720p', '576p', '480p', '4k', 'uhd']

# Source tags - longest first so "web-dl" wins over shorter overlaps
SOURCE_TAGS = [
    'blu-ray',
    'bluray',
    'bdrip',
    'brrip',
    'web-dl',
    'webrip',
    'hdtv',
    'dvdrip',
    'hdrip',
    'remux',
]

# Release tags to strip from titles
# These are encoding/release metadata, not media metadata
RELEASE_TAGS = [
    'x264',
    'x265',
    'h264',
    'h265',
    'h.264',
    'h.265',
    'hevc',
    'avc',
    '10bit',
    '8bit',
    'hdr',
    'hdr10',
    'aac',
    'ac3',
    'eac3',
    'dts',
    'dts-hd',
    'truehd',
    'atmos',
    'flac',
    'ddp5.1',
    'dd5.1',
    'amzn',
    'nf',
    'hulu',
    'dsnp',
    'yify',
    'rarbg',
    'repack',
]

# =============================================================================
# CLASSIFICATION
# =============================================================================

MEDIA_KINDS = ('movie', 'tv', 'unknown')

# Directory-segment keywords, checked before filename heuristics
TV_PATH_KEYWORDS = {'tv', 'series', 'season', 'seasons', 'episode', 'episodes'}
MOVIE_PATH_KEYWORDS = {'movie', 'movies', 'film', 'films'}

# Directory names that never name a series ("Season 1", "S02", "第1季", "Specials")
SEASON_DIR_PATTERN = r'^(?:s(?:eason)?[\s._-]*\d+|第.*?季|specials?|extras?)$'

# fuzz.ratio above which two titles in one directory are the same series
SERIES_MATCH_RATIO = 85

# =============================================================================
# SCHEDULING
# =============================================================================

PRIORITY_RANK = {'high': 0, 'medium': 1, 'low': 2}

DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds

# Items above this size are scheduled one priority class higher
LARGE_FILE_BYTES = 2 * 1024 * 1024 * 1024

# =============================================================================
# MATCHING
# =============================================================================

STOP_WORDS = {
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by',
}

TITLE_WEIGHT = 0.6
YEAR_WEIGHT = 0.3
TYPE_WEIGHT = 0.1
CONFIDENCE_BOOST = 1.2

EXACT_THRESHOLD = 0.85
FUZZY_THRESHOLD = 0.6
AI_RECOGNIZER_FLOOR = 0.5   # recognizer must be strictly above this to be used
AI_RESEARCH_THRESHOLD = 0.6
AI_BONUS = 0.1
AI_BONUS_CAP = 0.9
ACCEPTANCE_FLOOR = 0.4

# =============================================================================
# IDENTITY
# =============================================================================

FINGERPRINT_PREFIX_BYTES = 1024 * 1024  # 1 MiB
METADATA_FINGERPRINT_PREFIX = 'm-'
SUBMISSION_MIN_CONFIDENCE = 0.7
LOCAL_MATCH_CONFIDENCE = 0.9
HASH_CACHE_TTL = 24 * 60 * 60  # seconds

# =============================================================================
# SCAN PHASES
# =============================================================================

TERMINAL_PHASES = ('completed', 'error')
