#!/usr/bin/env python3
"""
Invalidate "no result" cache entries so unmatched titles are re-queried.
Run this after improving filename parsing, or when TMDb/OMDb have caught up
with new releases.

Usage:
    python scripts/invalidate_null_cache.py conservative        # Recommended
    python scripts/invalidate_null_cache.py aggressive          # Also drops thin details entries
    python scripts/invalidate_null_cache.py --validate-matches  # Report suspect search hits
"""
import json
import shutil
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.similarity import title_similarity


def backup_cache(cache_path):
    """Backup cache to cache_backups/ before modification"""
    backup_dir = Path(cache_path).parent / 'cache_backups'
    backup_dir.mkdir(exist_ok=True, parents=True)

    cache_name = Path(cache_path).stem
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    backup_path = backup_dir / f"{cache_name}_backup_{timestamp}.json"

    shutil.copy2(cache_path, backup_path)
    print(f"✓ Backed up to {backup_path}")
    return backup_path


def invalidate_null_entries(cache_path, aggressive=False):
    """
    Remove cached "no result" entries to force re-query.

    Conservative: only entries cached as null/empty
    Aggressive: also details entries with neither overview nor genres
    """
    with open(cache_path, encoding='utf-8') as f:
        cache = json.load(f)

    original_count = len(cache)
    removed = []

    for key, value in list(cache.items()):
        should_remove = value is None or value == {} or value == []
        if not should_remove and aggressive and key.startswith('details|'):
            should_remove = not value.get('overview') and not value.get('genres')

        if should_remove:
            removed.append(key)
            del cache[key]

    with open(cache_path, 'w', encoding='utf-8') as f:
        json.dump(cache, f, indent=2, ensure_ascii=False)

    print(f"✓ Removed {len(removed)} entries from {cache_path}")
    print(f"  Before: {original_count} entries")
    print(f"  After: {len(cache)} entries")

    return removed


def validate_matches(cache_path, threshold=0.6):
    """
    Report cached TMDb searches whose best hit doesn't resemble the query.

    Search key format: "search|scope|query_title|year". Reports only, never
    deletes.
    """
    with open(cache_path, encoding='utf-8') as f:
        cache = json.load(f)

    suspect = []
    skipped_null = 0

    for key, value in cache.items():
        if not key.startswith('search|'):
            continue
        if not value:
            skipped_null += 1
            continue

        query_title = key.split('|')[2]
        best = max(value, key=lambda hit: title_similarity(query_title, hit.get('title', '')))
        sim = title_similarity(query_title, best.get('title', ''))
        if sim < threshold:
            suspect.append({
                'cache_key': key,
                'query_title': query_title,
                'cached_title': best.get('title', ''),
                'similarity': round(sim, 3),
                'tmdb_id': best.get('id'),
            })

    print(f"\nValidate-Matches Report: {cache_path}")
    print(f"  Total entries scanned: {len(cache)}")
    print(f"  Null searches skipped: {skipped_null}")
    print(f"  Suspect searches (similarity < {threshold}): {len(suspect)}\n")

    if suspect:
        suspect.sort(key=lambda x: x['similarity'])
        for entry in suspect:
            print(
                f"  [{entry['similarity']:.2f}] query='{entry['query_title']}' "
                f"→ best='{entry['cached_title']}' "
                f"(tmdb_id={entry['tmdb_id']}, key='{entry['cache_key']}')"
            )
    else:
        print("  No suspect entries found.")

    return suspect


if __name__ == '__main__':
    mode = sys.argv[1] if len(sys.argv) > 1 else 'conservative'
    cache_dir = Path(sys.argv[2]) if len(sys.argv) > 2 else Path('output')
    tmdb_cache = cache_dir / 'tmdb_cache.json'
    omdb_cache = cache_dir / 'omdb_cache.json'

    if mode == '--validate-matches':
        if not tmdb_cache.exists():
            print(f"TMDb cache not found at {tmdb_cache}. Run scan.py first.")
            sys.exit(1)
        validate_matches(tmdb_cache)
        sys.exit(0)

    if mode not in ['conservative', 'aggressive']:
        print("Usage: python scripts/invalidate_null_cache.py [conservative|aggressive|--validate-matches] [cache_dir]")
        print("\nconservative:       Remove cached 'no result' entries (recommended)")
        print("aggressive:         Also remove details entries without overview or genres")
        print("--validate-matches: Report cached searches whose best hit doesn't match the query")
        sys.exit(1)

    print(f"Cache Invalidation Mode: {mode}\n")

    total_removed = 0
    for label, cache_path in (('TMDb', tmdb_cache), ('OMDb', omdb_cache)):
        if not cache_path.exists():
            print(f"⚠️  {label} cache not found at {cache_path}")
            continue
        print(f"\n=== {label} Cache ===")
        backup_cache(cache_path)
        total_removed += len(invalidate_null_entries(cache_path, aggressive=(mode == 'aggressive')))

    print(f"\n{'='*60}")
    print(f"✓ Total invalidated: {total_removed} entries")
    print(f"{'='*60}")
    print("\nNext step: run scan.py again to re-query the invalidated titles")
