#!/usr/bin/env python3
"""Test suite for the local share storage collaborator"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.exceptions import StorageError
from mediacat.storage import LocalShareStorage, Storage


@pytest.fixture
def storage(make_share):
    return LocalShareStorage(make_share({
        'Movies/Heat.1995.mkv': b'heat',
        'Movies/Heat.1995.nfo': b'<movie/>',
        'Movies/.hidden.mkv': b'x',
        'TV Shows/Show/Season 1/Show.S01E01.mp4': b'ep1',
        '.recycle/Old.mkv': b'old',
    }))


class TestScanMediaFiles:

    def test_video_files_only(self, storage):
        paths = [f.path for f in storage.scan_media_files('')]
        assert paths == ['Movies/Heat.1995.mkv', 'TV Shows/Show/Season 1/Show.S01E01.mp4']

    def test_sub_folder(self, storage):
        files = storage.scan_media_files('Movies')
        assert [f.display_name for f in files] == ['Heat.1995.mkv']
        assert files[0].size == 4
        assert files[0].modified_time is not None
        assert not files[0].is_directory

    def test_missing_folder(self, storage):
        with pytest.raises(StorageError):
            storage.scan_media_files('Nope')

    def test_escape_rejected(self, storage):
        with pytest.raises(StorageError):
            storage.scan_media_files('../..')


class TestListingAndReading:

    def test_satisfies_storage_protocol(self, storage):
        assert isinstance(storage, Storage)

    def test_discover_shares(self, storage):
        assert storage.discover_shares() == ['Movies', 'TV Shows']

    def test_list_directory(self, storage):
        entries = storage.list_directory('TV Shows', 'Show')
        assert [(e.display_name, e.is_directory) for e in entries] == [('Season 1', True)]
        assert entries[0].path == 'TV Shows/Show/Season 1'

    def test_read_prefix(self, storage):
        assert storage.read_file('Movies/Heat.1995.mkv', 2) == b'he'
        assert storage.read_file('Movies/Heat.1995.mkv') == b'heat'

    def test_read_missing(self, storage):
        with pytest.raises(StorageError):
            storage.read_file('Movies/Gone.mkv')

    def test_unreachable_share(self, tmp_path):
        with pytest.raises(StorageError):
            LocalShareStorage(tmp_path / 'offline').connect()
