#!/usr/bin/env python3
"""Test suite for fingerprinting, identity reuse and duplicate detection"""

import asyncio
import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.classifier import make_item_id
from mediacat.identity import IdentityService, content_fingerprint, metadata_fingerprint
from mediacat.models import CatalogItem, Fingerprint, HashMatch, MetadataUpdate, RawFile
from mediacat.storage import LocalShareStorage

MOVIE_BYTES = b'\x1aE\xdf\xa3' + b'movie-bytes' * 100


def raw(path, size=0, mtime=None):
    return RawFile(path=path, display_name=Path(path).name, size=size, modified_time=mtime)


def complete_item(item_id='m-1', confidence=0.8):
    return CatalogItem(id=item_id, title='Inception', kind='movie', primary_path='Movies/Inception.mkv',
                       year=2010, overview_ref='Dreams', confidence=confidence, match_method='exact')


@pytest.fixture
def community_match():
    return HashMatch(
        fingerprint='fff',
        source='community',
        metadata=MetadataUpdate(title='Inception', year=2010, kind='movie', overview='Dreams',
                                external_id='27205', source='community'),
        confidence=0.8,
    )


class TestFingerprint:
    """Content fingerprints, with a metadata fallback"""

    def test_same_bytes_same_fingerprint(self, make_share, store):
        share = make_share({'Movies/A.mkv': MOVIE_BYTES, 'Backup/Copy of A.mkv': MOVIE_BYTES})
        service = IdentityService(LocalShareStorage(share), store)
        first = asyncio.run(service.fingerprint(raw('Movies/A.mkv', len(MOVIE_BYTES))))
        second = asyncio.run(service.fingerprint(raw('Backup/Copy of A.mkv', len(MOVIE_BYTES))))
        assert first.value == second.value
        assert first.strategy == 'content'
        assert first.value == content_fingerprint(len(MOVIE_BYTES), MOVIE_BYTES)

    def test_different_bytes_differ(self, make_share, store):
        share = make_share({'A.mkv': b'one', 'B.mkv': b'two'})
        service = IdentityService(LocalShareStorage(share), store)
        a = asyncio.run(service.fingerprint(raw('A.mkv', 3)))
        b = asyncio.run(service.fingerprint(raw('B.mkv', 3)))
        assert a.value != b.value

    def test_unreadable_file_uses_metadata(self, make_share, store):
        share = make_share({})
        service = IdentityService(LocalShareStorage(share), store)
        missing = raw('Movies/gone.mkv', 1234, 1700000000.0)
        result = asyncio.run(service.fingerprint(missing))
        assert result.strategy == 'metadata'
        assert result.value.startswith('m-')
        assert result.value == metadata_fingerprint(missing)


class TestLookup:
    """Local catalog first, then the community registry"""

    def test_local_match(self, store):
        store.upsert_item(complete_item('m-1', confidence=0.95))
        store.upsert_item(CatalogItem(id='m-2', title='inception copy', kind='unknown', primary_path='b.mkv'))
        store.apply_metadata('m-1', MetadataUpdate(title='Inception'), 0.95, 'exact')
        store.upsert_fingerprint(Fingerprint(value='abc'), 'm-1')
        store.upsert_fingerprint(Fingerprint(value='abc'), 'm-2')

        service = IdentityService(MagicMock(), store)
        match = asyncio.run(service.lookup('abc', exclude_item_id='m-2'))
        assert match.source == 'local'
        assert match.media_id == 'm-1'
        assert match.confidence == 0.9
        assert match.metadata.title == 'Inception'

    def test_no_match_without_registry(self, store):
        service = IdentityService(MagicMock(), store)
        assert asyncio.run(service.lookup('nothing')) is None

    def test_community_fills_incomplete_item(self, store, community_match):
        store.upsert_item(CatalogItem(id='m-3', title='incep', kind='unknown', primary_path='c.mkv'))
        store.upsert_fingerprint(Fingerprint(value='fff'), 'm-3')
        registry = MagicMock()
        registry.lookup.return_value = community_match

        service = IdentityService(MagicMock(), store, registry)
        match = asyncio.run(service.lookup('fff'))
        assert match.source == 'community'
        item = store.get_item('m-3')
        assert item.title == 'Inception'
        assert item.overview_ref == 'Dreams'
        assert item.match_method == 'community'
        assert item.confidence == 0.8

    def test_community_keeps_existing_identification(self, store, community_match):
        store.upsert_item(CatalogItem(id='m-4', title='Inception', kind='movie', primary_path='d.mkv'))
        store.apply_metadata('m-4', MetadataUpdate(title='Inception', year=2010), 0.7, 'fuzzy')
        store.upsert_fingerprint(Fingerprint(value='fff'), 'm-4')
        registry = MagicMock()
        registry.lookup.return_value = community_match

        service = IdentityService(MagicMock(), store, registry)
        asyncio.run(service.lookup('fff', exclude_item_id='m-4'))
        item = store.get_item('m-4')
        assert item.overview_ref == 'Dreams'
        assert item.match_method == 'fuzzy'
        assert item.confidence == 0.7

    def test_community_results_cached(self, store, community_match):
        registry = MagicMock()
        registry.lookup.return_value = community_match
        service = IdentityService(MagicMock(), store, registry)

        async def twice():
            await service.lookup('fff')
            await service.lookup('fff')

        asyncio.run(twice())
        assert registry.lookup.call_count == 1

    def test_cache_expires(self, store):
        now = [0.0]
        registry = MagicMock()
        registry.lookup.return_value = None
        service = IdentityService(MagicMock(), store, registry, cache_ttl=60, clock=lambda: now[0])

        asyncio.run(service.lookup('fff'))
        now[0] = 61.0
        asyncio.run(service.lookup('fff'))
        assert registry.lookup.call_count == 2

    def test_registry_error_is_no_match(self, store):
        registry = MagicMock()
        registry.lookup.side_effect = ConnectionError("down")
        service = IdentityService(MagicMock(), store, registry)
        assert asyncio.run(service.lookup('fff')) is None


class TestSubmit:
    """Only confident, complete identifications are shared"""

    def test_confident_complete_item_submitted(self, store):
        registry = MagicMock()
        registry.submit.return_value = True
        service = IdentityService(MagicMock(), store, registry)
        assert asyncio.run(service.submit('fp', complete_item(), 0.8)) is True
        args = registry.submit.call_args[0]
        assert args[0] == 'fp'
        assert args[1].title == 'Inception'
        assert args[2] == 0.8

    def test_low_confidence_not_submitted(self, store):
        registry = MagicMock()
        service = IdentityService(MagicMock(), store, registry)
        assert asyncio.run(service.submit('fp', complete_item(), 0.6)) is False
        registry.submit.assert_not_called()

    def test_incomplete_item_not_submitted(self, store):
        registry = MagicMock()
        service = IdentityService(MagicMock(), store, registry)
        item = CatalogItem(id='m-1', title='Inception', kind='movie', primary_path='a.mkv', year=2010)
        assert asyncio.run(service.submit('fp', item, 0.95)) is False
        registry.submit.assert_not_called()

    def test_submission_error_reported_as_false(self, store):
        registry = MagicMock()
        registry.submit.side_effect = ConnectionError("down")
        service = IdentityService(MagicMock(), store, registry)
        assert asyncio.run(service.submit('fp', complete_item(), 0.9)) is False


class TestProcessItems:
    """The identity sweep over a scanned catalog"""

    def test_copy_reuses_identification_and_is_reported(self, make_share, store):
        share = make_share({'Movies/A.2001.mkv': MOVIE_BYTES, 'Movies/B.2002.mkv': MOVIE_BYTES})
        storage = LocalShareStorage(share)
        raw_files = storage.scan_media_files('')

        a_id = make_item_id('Movies/A.2001.mkv')
        b_id = make_item_id('Movies/B.2002.mkv')
        store.upsert_item(CatalogItem(id=a_id, title='A', kind='movie', primary_path='Movies/A.2001.mkv',
                                      year=2001, size=len(MOVIE_BYTES)))
        store.apply_metadata(a_id, MetadataUpdate(title='Alpha', year=2001, kind='movie'), 0.95, 'exact')
        store.upsert_item(CatalogItem(id=b_id, title='B', kind='movie', primary_path='Movies/B.2002.mkv',
                                      year=2002, size=len(MOVIE_BYTES)))

        service = IdentityService(storage, store)
        items = [store.get_item(a_id), store.get_item(b_id)]
        stats = asyncio.run(service.process_items(items, raw_files))

        assert stats == {'total': 2, 'fingerprinted': 2, 'matched': 1, 'submitted': 0, 'errors': 0}
        copy = store.get_item(b_id)
        assert copy.title == 'Alpha'
        assert copy.match_method == 'local-hash'

        duplicates = service.find_duplicates()
        assert len(duplicates) == 1
        assert {i.id for i in duplicates[0].items} == {a_id, b_id}

    def test_resolved_items_submitted(self, make_share, store):
        share = make_share({'Movies/Inception.mkv': MOVIE_BYTES})
        registry = MagicMock()
        registry.lookup.return_value = None
        registry.submit.return_value = True
        store.upsert_item(complete_item('m-1', confidence=0.0))
        store.apply_metadata('m-1', MetadataUpdate(title='Inception'), 0.9, 'exact')

        service = IdentityService(LocalShareStorage(share), store, registry)
        stats = asyncio.run(service.process_items([store.get_item('m-1')]))
        assert stats['submitted'] == 1
        assert store.get_item('m-1').fingerprint is not None
