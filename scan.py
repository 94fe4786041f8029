#!/usr/bin/env python3
"""
scan.py - Media catalog scan

NEVER moves or modifies media files. Reads listings and the first MiB of
each file, writes the catalog database and CSV reports.

Pipeline:
1. [DISCOVERY] List video files under the configured share folders
2. [PRECISION] Parse filenames → title / year / resolution / source / episode
3. [REASONING] Classify movie / tv / unknown, group episodes into series
4. [PERSIST]   Upsert every item before any lookup starts
5. [LOOKUP]    Resolve unresolved items: TMDb exact → TMDb fuzzy →
               recognizer → OMDb web search (bounded concurrency, retries)
6. [IDENTITY]  Fingerprint files, reuse known matches, report duplicates
"""

import sys
import csv
import asyncio
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from mediacat.config import ScanSettings, load_config
from mediacat.events import EventEmitter, PHASE_CHANGED, ITEM_FAILED
from mediacat.exceptions import ConfigurationError
from mediacat.identity import IdentityService
from mediacat.models import CatalogItem, DuplicateGroup, ScanStatus
from mediacat.omdb import OMDbClient
from mediacat.orchestrator import ScanOrchestrator
from mediacat.recognizer import GeminiRecognizer, HeuristicRecognizer
from mediacat.registry import CommunityRegistry
from mediacat.resolver import build_default_resolver
from mediacat.storage import LocalShareStorage
from mediacat.store import CatalogStore
from mediacat.tmdb import TMDbClient

logger = logging.getLogger(__name__)


class MediaScanner:
    """Wires configuration to the scan pipeline and reports the outcome"""

    def __init__(self, settings: ScanSettings, no_api: bool = False):
        self.settings = settings
        self.no_api = no_api
        self._setup_components()

    def _setup_components(self):
        """Initialize storage, store, metadata sources and the orchestrator"""
        self.storage = LocalShareStorage(Path(self.settings.share_path or '.'))
        self.store = CatalogStore(self.settings.database_path)
        cache_dir = Path(self.settings.cache_dir)

        self.tmdb = None
        self.omdb = None
        self.registry = None
        recognizer = None

        if self.no_api:
            logger.info("API lookups disabled (--no-api) - classification only")
        else:
            if self.settings.tmdb_api_key:
                self.tmdb = TMDbClient(self.settings.tmdb_api_key, cache_dir / 'tmdb_cache.json',
                                       language=self.settings.language)
                logger.info("✓ TMDb lookup enabled")
            else:
                logger.warning("⚠ TMDb lookup disabled (no API key) - exact and fuzzy tiers skipped")
                logger.warning("  Get a free API key at: https://www.themoviedb.org/settings/api")

            if self.settings.omdb_api_key:
                self.omdb = OMDbClient(self.settings.omdb_api_key, cache_dir / 'omdb_cache.json')
                logger.info("✓ OMDb web search enabled")
            else:
                logger.warning("⚠ OMDb web search disabled (no API key)")

            if self.settings.gemini_api_key:
                recognizer = GeminiRecognizer(self.settings.gemini_api_key)
                logger.info("✓ Gemini name recognition enabled")
            else:
                recognizer = HeuristicRecognizer()
                logger.info("Using offline name recognition (no Gemini API key)")

            if self.settings.hash_registry_url:
                self.registry = CommunityRegistry(self.settings.hash_registry_url)
                logger.info(f"✓ Community hash registry: {self.settings.hash_registry_url}")

        resolver = None
        if not self.no_api:
            resolver = build_default_resolver(self.tmdb, recognizer, self.omdb)

        identity = IdentityService(self.storage, self.store, self.registry)
        self.events = EventEmitter()
        self.events.subscribe(PHASE_CHANGED, self._log_progress)
        self.events.subscribe(ITEM_FAILED, self._log_failure)
        self.orchestrator = ScanOrchestrator(
            self.storage, self.store, resolver, self.settings,
            identity=identity, emitter=self.events,
        )

    def _log_progress(self, payload):
        status: ScanStatus = payload['status']
        if status.total:
            logger.debug(f"[{status.phase}] {status.current}/{status.total}")

    def _log_failure(self, payload):
        logger.debug(f"Unresolved item {payload['item_id']}: {payload['result'].error}")

    async def run(self) -> ScanStatus:
        await self.orchestrator.run_scan()
        if self.orchestrator.sweep_task is not None:
            await self.orchestrator.sweep_task
        return self.orchestrator.get_status()

    def write_manifest(self, items: List[CatalogItem], output_path: Path):
        """Write one CSV row per catalog item"""
        fieldnames = [
            'id', 'kind', 'title', 'year', 'episodes', 'primary_path', 'match_method',
            'confidence', 'external_id', 'genres', 'rating', 'fingerprint',
        ]
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, quoting=csv.QUOTE_ALL)
            writer.writeheader()
            for item in items:
                writer.writerow({
                    'id': item.id,
                    'kind': item.kind,
                    'title': item.title,
                    'year': item.year or '',
                    'episodes': len(item.episodes) if item.kind == 'tv' else '',
                    'primary_path': item.primary_path,
                    'match_method': item.match_method or 'unresolved',
                    'confidence': f"{item.confidence:.2f}",
                    'external_id': item.external_id or '',
                    'genres': ', '.join(item.genres),
                    'rating': item.rating if item.rating is not None else '',
                    'fingerprint': item.fingerprint or '',
                })

        logger.info(f"Wrote catalog manifest ({len(items)} items) to {output_path}")

    def write_duplicates(self, duplicates: List[DuplicateGroup], output_path: Path):
        """Possible duplicates, one row per item, grouped by fingerprint"""
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.writer(f, quoting=csv.QUOTE_ALL)
            writer.writerow(['fingerprint', 'id', 'title', 'year', 'primary_path'])
            for group in duplicates:
                for item in group.items:
                    writer.writerow([group.fingerprint, item.id, item.title, item.year or '', item.primary_path])

        logger.info(f"Wrote duplicate report ({len(duplicates)} groups) to {output_path}")

    def print_stats(self, status: ScanStatus):
        """Print scan statistics"""
        stats = self.store.get_stats()

        print("\n" + "=" * 60)
        print("SCAN STATISTICS")
        print("=" * 60)
        print(f"Phase: {status.phase}")
        if status.started_at:
            print(f"Started: {status.started_at}")
        total_items = sum(stats['by_kind'].values())
        print(f"Catalog items: {total_items} ({stats['episodes']} episodes)\n")

        print("BY KIND:")
        for kind in ['movie', 'tv', 'unknown']:
            count = stats['by_kind'].get(kind, 0)
            pct = (count / total_items * 100) if total_items > 0 else 0
            print(f"  {kind:15s}: {count:4d} ({pct:5.1f}%)")

        print("\nBY MATCH METHOD:")
        for method, count in sorted(stats['by_method'].items(), key=lambda x: -x[1]):
            print(f"  {method:15s}: {count:4d}")

        print(f"\nThis scan: {status.items_resolved} resolved, {status.items_failed} unresolved")
        if status.duplicates:
            print(f"Possible duplicates: {len(status.duplicates)} group(s)")

        if self.tmdb:
            cache_stats = self.tmdb.get_cache_stats()
            print(f"\nTMDb: {cache_stats['misses']} API queries, "
                  f"{cache_stats['hits']} cache hits "
                  f"({cache_stats['hit_rate']:.0f}% hit rate)")

        if self.omdb:
            cache_stats = self.omdb.get_cache_stats()
            print(f"OMDb: {cache_stats['misses']} API queries, "
                  f"{cache_stats['hits']} cache hits "
                  f"({cache_stats['hit_rate']:.0f}% hit rate)")

        if self.registry:
            reg = self.registry.stats
            print(f"Hash registry: {reg['hits']}/{reg['lookups']} hits, {reg['submitted']} submitted")

        if status.errors:
            print(f"\nErrors ({len(status.errors)}):")
            for error in status.errors[:20]:
                print(f"  {error}")
            if len(status.errors) > 20:
                print(f"  ... {len(status.errors) - 20} more")

        print("=" * 60)


def build_settings(args) -> ScanSettings:
    settings = load_config(args.config if args.config and args.config.exists() else None)
    if args.config and not args.config.exists():
        logger.warning(f"Config file not found: {args.config} - using defaults and environment")
    if args.share:
        settings.share_path = str(args.share)
    if args.folder:
        settings.folders = args.folder
    if args.max_concurrency:
        settings.max_concurrency = args.max_concurrency
    if args.database:
        settings.database_path = args.database
    settings.validate()
    return settings


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description='Scan a media share, identify movies and series, build the catalog',
        epilog="""
NEVER moves files. Only reads listings and file headers, writes the catalog.

Examples:
  python scan.py --share /mnt/media
  python scan.py --share /mnt/media --folder Movies --folder "TV Shows"
  python scan.py --config config.yaml --no-api
  python scan.py --share /mnt/media --output output/catalog.csv -v
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('--config', type=Path, default=Path('config.yaml'),
                        help='Configuration file (default: config.yaml)')
    parser.add_argument('--share', type=Path,
                        help='Mounted share root (overrides share_path)')
    parser.add_argument('--folder', action='append',
                        help='Folder under the share to scan (repeatable, default: whole share)')
    parser.add_argument('--database', type=Path,
                        help='Catalog database path (overrides database_path)')
    parser.add_argument('--no-api', action='store_true',
                        help='Disable all metadata lookups (offline classification)')
    parser.add_argument('--max-concurrency', type=int,
                        help='Concurrent metadata lookups (default: 3)')
    parser.add_argument('--output', '-o', type=Path,
                        default=Path('output/catalog_manifest.csv'),
                        help='Output CSV manifest path (default: output/catalog_manifest.csv)')
    parser.add_argument('--duplicates', type=Path,
                        default=Path('output/duplicates.csv'),
                        help='Duplicate report path (default: output/duplicates.csv)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    scanner = MediaScanner(settings, no_api=args.no_api)
    logger.info(f"Scanning: {settings.share_path}")
    try:
        status = asyncio.run(scanner.run())
        scanner.write_manifest(scanner.store.all_items(), args.output)
        scanner.write_duplicates(status.duplicates, args.duplicates)
        scanner.print_stats(status)
    finally:
        scanner.store.close()

    return 0 if status.phase == 'completed' else 1


if __name__ == '__main__':
    sys.exit(main())
