#!/usr/bin/env python3
"""Test suite for filename parsing"""

import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from mediacat.parser import NameParser, strip_episode_markers


@pytest.fixture
def parser():
    return NameParser()


class TestSceneReleases:
    """Title.Year.Resolution.Source-GROUP names"""

    def test_full_scene_name(self, parser):
        result = parser.parse("Inception.2010.1080p.BluRay.x264-GROUP.mkv")
        assert result.title == "Inception"
        assert result.year == 2010
        assert result.resolution == "1080p"
        assert result.source_tag == "BluRay"
        assert result.season is None
        assert result.episode is None

    @pytest.mark.parametrize("resolution", ["2160p", "1080p", "720p", "480p", "4K", "UHD"])
    @pytest.mark.parametrize("source", ["BluRay", "Blu-Ray", "WEB-DL", "WEBRip", "HDTV", "DVDRip", "BDRip", "Remux"])
    def test_tokens_recovered_as_written(self, parser, resolution, source):
        result = parser.parse(f"The.Matrix.1999.{resolution}.{source}-GRP.mkv")
        assert result.title == "The Matrix"
        assert result.year == 1999
        assert result.resolution == resolution
        assert result.source_tag == source

    def test_hyphenated_title_kept(self, parser):
        result = parser.parse("Spider-Man.2002.720p.WEB-DL-GRP.mkv")
        assert result.title == "Spider-Man"
        assert result.year == 2002

    def test_unknown_extension_not_stripped(self, parser):
        result = parser.parse("Heat.1995")
        assert result.title == "Heat"
        assert result.year == 1995


class TestYearExtraction:
    """Bracketed years win, otherwise the last bare year"""

    def test_bracketed_year_preferred(self, parser):
        result = parser.parse("Blade Runner 2049 (2017).mkv")
        assert result.title == "Blade Runner 2049"
        assert result.year == 2017

    def test_last_bare_year_used(self, parser):
        result = parser.parse("2001.A.Space.Odyssey.1968.mkv")
        assert result.title == "2001 A Space Odyssey"
        assert result.year == 1968

    def test_year_only_name_keeps_year_as_title(self, parser):
        result = parser.parse("2012.mkv")
        assert result.title == "2012"
        assert result.year is None

    def test_leading_year_falls_back_to_remaining_text(self, parser):
        result = parser.parse("(2010) Inception.mkv")
        assert result.title == "Inception"
        assert result.year == 2010


class TestEpisodeMarkers:
    """Season/episode markers in their supported forms"""

    def test_s01e02(self, parser):
        result = parser.parse("Show.S01E02.mkv")
        assert result.title == "Show"
        assert (result.season, result.episode) == (1, 2)
        assert result.has_episode_marker

    def test_season_episode_words(self, parser):
        result = parser.parse("Show Name Season 1 Episode 2.mp4")
        assert result.title == "Show Name"
        assert (result.season, result.episode) == (1, 2)

    def test_cjk_marker(self, parser):
        result = parser.parse("庆余年.第1季第2集.mp4")
        assert result.title == "庆余年"
        assert (result.season, result.episode) == (1, 2)

    def test_nxnn_marker(self, parser):
        result = parser.parse("Friends.1x02.The.One.mkv")
        assert result.title == "Friends"
        assert (result.season, result.episode) == (1, 2)
        assert result.episode_title == "The One"

    def test_bracketed_marker_leaves_no_brackets(self, parser):
        result = parser.parse("[SubsPlease] Frieren [S01E05] [1080p].mkv")
        assert result.title == "Frieren"
        assert (result.season, result.episode) == (1, 5)
        assert result.resolution == "1080p"
        assert result.episode_title is None

    def test_year_before_marker(self, parser):
        result = parser.parse("Doctor.Who.2005.S01E01.mkv")
        assert result.title == "Doctor Who"
        assert result.year == 2005
        assert (result.season, result.episode) == (1, 1)

    def test_no_marker(self, parser):
        result = parser.parse("home_video.mkv")
        assert result.title == "home video"
        assert not result.has_episode_marker


class TestStripEpisodeMarkers:
    """Series keys drop every season/episode marker"""

    def test_strips_episode(self):
        assert strip_episode_markers("Show S01E02") == "Show"

    def test_strips_season_only(self):
        assert strip_episode_markers("Show Season 2") == "Show"

    def test_leaves_plain_title(self):
        assert strip_episode_markers("The Office") == "The Office"
