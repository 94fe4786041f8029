#!/usr/bin/env python3
"""Test suite for classification, series grouping and catalog building"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.classifier import (
    MediaClassifier, CatalogBuilder, SeriesGrouper, make_item_id, item_priority, is_season_dir
)
from mediacat.exceptions import ClassificationError
from mediacat.models import RawFile, CatalogItem
from mediacat.parser import NameParser


def raw(path, size=0):
    return RawFile(path=path, display_name=Path(path).name, size=size)


@pytest.fixture
def classifier():
    return MediaClassifier()


@pytest.fixture
def builder():
    return CatalogBuilder()


class TestClassification:
    """Directory keywords first, then filename markers, then year"""

    def test_movie_keyword_in_path(self, classifier):
        assert classifier.classify(raw("Movies/Inception.2010.mkv")) == 'movie'

    def test_tv_keyword_in_path(self, classifier):
        assert classifier.classify(raw("TV Shows/Show/Show.S01E01.mkv")) == 'tv'

    def test_season_directory(self, classifier):
        assert classifier.classify(raw("Stuff/Show/Season 2/episode_file.mkv")) == 'tv'

    def test_path_keyword_beats_filename(self, classifier):
        assert classifier.classify(raw("Movies/Show.S01E01.mkv")) == 'movie'

    def test_episode_marker_without_keywords(self, classifier):
        assert classifier.classify(raw("Downloads/Show.S01E01.mkv")) == 'tv'

    def test_year_without_marker(self, classifier):
        assert classifier.classify(raw("Downloads/Heat.1995.mkv")) == 'movie'

    def test_nothing_to_go_on(self, classifier):
        assert classifier.classify(raw("Downloads/home_video.mkv")) == 'unknown'

    def test_directory_rejected(self, classifier):
        with pytest.raises(ClassificationError):
            classifier.classify(RawFile(path="Movies/Extras", display_name="Extras", is_directory=True))

    @pytest.mark.parametrize("name", ["Season 1", "S02", "season_03", "Specials", "第1季"])
    def test_season_dir_names(self, name):
        assert is_season_dir(name)

    def test_show_name_is_not_season_dir(self):
        assert not is_season_dir("Breaking Bad")


class TestSeriesGrouping:
    """Episode files collapse into one item per series"""

    def test_two_episodes_one_series(self, builder):
        items, errors = builder.build([
            raw("Downloads/Show.S01E01.mkv"),
            raw("Downloads/Show.S01E02.mkv"),
        ])
        assert errors == []
        assert len(items) == 1
        series = items[0]
        assert series.kind == 'tv'
        assert series.title == "Show"
        assert series.primary_path == "Downloads"
        assert [(e.season, e.episode) for e in series.episodes] == [(1, 1), (1, 2)]

    def test_episodes_sorted_regardless_of_input_order(self, builder):
        items, _ = builder.build([
            raw("TV/Show/Season 2/Show.S02E01.mkv"),
            raw("TV/Show/Season 1/Show.S01E02.mkv"),
            raw("TV/Show/Season 1/Show.S01E01.mkv"),
        ])
        assert len(items) == 1
        assert items[0].primary_path == "TV/Show"
        assert [(e.season, e.episode) for e in items[0].episodes] == [(1, 1), (1, 2), (2, 1)]

    def test_near_identical_titles_merge(self, builder):
        items, _ = builder.build([
            raw("Downloads/Greys.Anatomy.S01E01.mkv"),
            raw("Downloads/Grey's.Anatomy.S01E02.mkv"),
        ])
        assert len(items) == 1
        assert len(items[0].episodes) == 2

    def test_different_shows_in_one_folder(self, builder):
        items, _ = builder.build([
            raw("Downloads/Show.S01E01.mkv"),
            raw("Downloads/Other.Program.S01E01.mkv"),
        ])
        assert len(items) == 2
        assert items[0].id != items[1].id

    def test_duplicate_episode_first_wins(self, builder):
        items, _ = builder.build([
            raw("Downloads/Show.S01E01.mkv"),
            raw("Downloads/Show.S01E01.REPACK.mkv"),
        ])
        assert len(items[0].episodes) == 1
        assert items[0].episodes[0].path == "Downloads/Show.S01E01.mkv"

    def test_markerless_file_becomes_special(self, builder):
        items, _ = builder.build([
            raw("TV/Show/Season 1/Show.S01E01.mkv"),
            raw("TV/Show/Show.mkv"),
        ])
        assert len(items) == 1
        assert [(e.season, e.episode) for e in items[0].episodes] == [(0, 1), (1, 1)]

    def test_series_year_from_first_dated_episode(self, builder):
        items, _ = builder.build([
            raw("Downloads/Doctor.Who.S01E01.mkv"),
            raw("Downloads/Doctor.Who.2005.S01E02.mkv"),
        ])
        assert items[0].year == 2005

    def test_series_size_is_sum(self):
        grouper = SeriesGrouper()
        files = [raw("Downloads/Show.S01E01.mkv", 100), raw("Downloads/Show.S01E02.mkv", 50)]
        parser = NameParser()
        items = grouper.group([(f, parser.parse(f.display_name)) for f in files])
        assert items[0].size == 150


class TestCatalogBuilder:
    """Item ids, ordering and error reporting"""

    def test_movies_first_then_series(self, builder):
        items, _ = builder.build([
            raw("Downloads/Show.S01E01.mkv"),
            raw("Downloads/Heat.1995.mkv"),
        ])
        assert [item.kind for item in items] == ['movie', 'tv']

    def test_ids_are_deterministic(self, builder):
        files = [raw("Movies/Heat.1995.mkv"), raw("TV/Show/Show.S01E01.mkv")]
        first, _ = builder.build(files)
        second, _ = builder.build(files)
        assert [item.id for item in first] == [item.id for item in second]
        assert first[0].id == make_item_id("Movies/Heat.1995.mkv")

    def test_series_id_depends_on_key(self):
        assert make_item_id("TV/Show", "show") != make_item_id("TV/Show", "other")
        assert make_item_id("TV/Show", "show").startswith('tv-')
        assert make_item_id("Movies/Heat.mkv").startswith('m-')

    def test_unclassifiable_file_reported(self, builder):
        items, errors = builder.build([
            RawFile(path="Movies/Folder", display_name="Folder", is_directory=True),
            raw("Movies/Heat.1995.mkv"),
        ])
        assert len(items) == 1
        assert len(errors) == 1
        assert "Movies/Folder" in errors[0]


class TestPriority:
    """Scheduling priority derived from kind and size"""

    @pytest.mark.parametrize("kind,expected", [('movie', 'high'), ('tv', 'medium'), ('unknown', 'low')])
    def test_kind_priority(self, kind, expected):
        item = CatalogItem(id='x', title='X', kind=kind, primary_path='x.mkv')
        assert item_priority(item) == expected

    def test_large_file_moves_up(self):
        item = CatalogItem(id='x', title='X', kind='unknown', primary_path='x.mkv', size=3 * 1024 ** 3)
        assert item_priority(item) == 'medium'

    def test_large_movie_stays_high(self):
        item = CatalogItem(id='x', title='X', kind='movie', primary_path='x.mkv', size=3 * 1024 ** 3)
        assert item_priority(item) == 'high'
