#!/usr/bin/env python3
"""Test suite for the SQLite catalog store"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.models import CatalogItem, Episode, Fingerprint, MetadataUpdate
from mediacat.store import CatalogStore


def series(episodes, title='Show'):
    return CatalogItem(
        id='tv-show', title=title, kind='tv', primary_path='TV/Show',
        episodes=[Episode(path=f"TV/Show/S{s:02d}E{e:02d}.mkv", season=s, episode=e) for s, e in episodes],
    )


class TestItems:
    """Idempotent upserts keyed by item id"""

    def test_insert_and_read_back(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie',
                                      primary_path='Movies/Heat.1995.mkv', year=1995, genres=['Crime']))
        item = store.get_item('m-1')
        assert item.title == 'Heat'
        assert item.year == 1995
        assert item.genres == ['Crime']
        assert item.confidence == 0.0
        assert item.match_method is None

    def test_upsert_twice_keeps_one_row(self, store):
        first = store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv'))
        second = store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv'))
        assert len(store.all_items()) == 1
        assert second.created_at == first.created_at

    def test_episodes_merged_on_rescan(self, store):
        store.upsert_item(series([(1, 1)]))
        store.upsert_item(series([(1, 1), (1, 2)]))
        item = store.get_item('tv-show')
        assert [(e.season, e.episode) for e in item.episodes] == [(1, 1), (1, 2)]

    def test_unresolved_item_refreshed(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='unknown', primary_path='a.mkv'))
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv', year=1995))
        item = store.get_item('m-1')
        assert item.kind == 'movie'
        assert item.year == 1995

    def test_enriched_metadata_survives_rescan(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='heat', kind='unknown', primary_path='a.mkv'))
        store.apply_metadata('m-1', MetadataUpdate(title='Heat', year=1995, kind='movie',
                                                   overview='Cops and robbers'), 0.95, 'exact')
        store.upsert_item(CatalogItem(id='m-1', title='heat', kind='unknown', primary_path='b.mkv'))
        item = store.get_item('m-1')
        assert item.title == 'Heat'
        assert item.kind == 'movie'
        assert item.primary_path == 'b.mkv'
        assert item.match_method == 'exact'

    def test_items_by_kind(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv'))
        store.upsert_item(series([(1, 1)]))
        assert [i.id for i in store.items_by_kind('movie')] == ['m-1']
        assert [i.id for i in store.items_by_kind('tv')] == ['tv-show']


class TestMetadata:
    """Accepted matches merged into stored items"""

    def test_apply_metadata_merges(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv', year=1995))
        item = store.apply_metadata('m-1', MetadataUpdate(overview='Cops and robbers', rating=8.3), 0.9, 'web')
        assert item.title == 'Heat'
        assert item.year == 1995
        assert item.overview_ref == 'Cops and robbers'
        assert item.rating == 8.3
        assert item.confidence == 0.9
        assert item.match_method == 'web'
        assert item.is_enriched()

    def test_apply_metadata_unknown_item(self, store):
        assert store.apply_metadata('missing', MetadataUpdate(title='X'), 0.9, 'exact') is None

    def test_stats(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv'))
        store.upsert_item(series([(1, 1), (1, 2)]))
        store.apply_metadata('m-1', MetadataUpdate(title='Heat'), 0.9, 'exact')
        stats = store.get_stats()
        assert stats['by_kind'] == {'movie': 1, 'tv': 1}
        assert stats['by_method'] == {'exact': 1, 'unresolved': 1}
        assert stats['episodes'] == 2


class TestFingerprints:
    """Fingerprint records and duplicate detection"""

    def test_fingerprint_attached_to_item(self, store):
        store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv'))
        store.upsert_fingerprint(Fingerprint(value='abc', media_id='m-1', title='Heat'), 'm-1')
        assert store.get_item('m-1').fingerprint == 'abc'
        assert store.get_fingerprint('abc').media_id == 'm-1'
        assert [i.id for i in store.get_by_fingerprint('abc')] == ['m-1']

    def test_duplicates(self, store):
        for item_id in ('m-1', 'm-2', 'm-3'):
            store.upsert_item(CatalogItem(id=item_id, title=item_id, kind='movie', primary_path=f"{item_id}.mkv"))
        store.upsert_fingerprint(Fingerprint(value='same'), 'm-1')
        store.upsert_fingerprint(Fingerprint(value='same'), 'm-2')
        store.upsert_fingerprint(Fingerprint(value='other'), 'm-3')
        groups = store.duplicate_fingerprints()
        assert len(groups) == 1
        assert groups[0].fingerprint == 'same'
        assert [i.id for i in groups[0].items] == ['m-1', 'm-2']

    def test_missing_fingerprint(self, store):
        assert store.get_fingerprint('nope') is None


class TestPersistence:
    """File-backed databases survive reconnects"""

    def test_reopen(self, tmp_path):
        db_path = tmp_path / 'catalog.db'
        with CatalogStore(db_path) as store:
            store.upsert_item(CatalogItem(id='m-1', title='Heat', kind='movie', primary_path='a.mkv'))
        with CatalogStore(db_path) as store:
            assert store.get_item('m-1').title == 'Heat'
