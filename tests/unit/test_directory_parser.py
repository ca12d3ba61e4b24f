"""
Unit tests for the directory name heuristic chain.
"""

import pytest

from album_organizer.metadata.directory_parser import (
    DirectoryNameParser,
    match_artist_title,
    match_scene_release,
)


@pytest.fixture
def parser():
    return DirectoryNameParser()


class TestPatterns:
    """Test each heuristic in priority order."""

    def test_bracket_catalog(self, parser):
        result = parser.parse("[KOMPAKT123] Artist Name - Title (2004)")
        assert result.pattern == "bracket_catalog"
        assert result.catalog_number == "KOMPAKT123"
        assert result.artist == "Artist Name"
        assert result.title == "Title"
        assert result.year == 2004

    def test_various_artists(self, parser):
        result = parser.parse("VA - Summer Hits (1999)")
        assert result.pattern == "various_artists"
        assert result.artist == "Various Artists"
        assert result.is_compilation is True
        assert result.title == "Summer Hits"
        assert result.year == 1999

    @pytest.mark.parametrize("name,artist,title,year", [
        ("Artist-Title-WEB-2019-GROUP", "Artist", "Title", 2019),
        ("Artist_Name-Title-WEB-2019-GRP", "Artist Name", "Title", 2019),
        ("Artist - Title - WEB - 2019 - GROUP", "Artist", "Title", 2019),
        ("Jay-Z - The Blueprint - 2001 - GRP", "Jay-Z", "The Blueprint", 2001),
        ("Jean-Michel Jarre - Oxygene - 1976 - FLAC", "Jean-Michel Jarre", "Oxygene", 1976),
        ("Boards of Canada - Music Has the Right to Children - 1998 - GRP",
         "Boards of Canada", "Music Has the Right to Children", 1998),
        ("Daft Punk - Harder-Better-Faster - WEB - 2001 - GRP",
         "Daft Punk", "Harder-Better-Faster", 2001),
    ])
    def test_scene_release(self, parser, name, artist, title, year):
        result = parser.parse(name)
        assert result.pattern == "scene_release"
        assert (result.artist, result.title, result.year) == (artist, title, year)

    def test_hyphenated_artist_without_scene_suffix(self, parser):
        result = parser.parse("Jean-Michel Jarre - Oxygene (1976)")
        assert result.pattern == "artist_title_year"
        assert (result.artist, result.title) == ("Jean-Michel Jarre", "Oxygene")

    def test_catalog_artist_title(self, parser):
        result = parser.parse("WARP123 Aphex Twin - Drukqs")
        assert result.pattern == "catalog_artist_title"
        assert result.catalog_number == "WARP123"
        assert result.artist == "Aphex Twin"
        assert result.title == "Drukqs"

    def test_artist_title_year(self, parser):
        result = parser.parse("Boards of Canada - Geogaddi (2002)")
        assert result.pattern == "artist_title_year"
        assert (result.artist, result.title, result.year) == ("Boards of Canada", "Geogaddi", 2002)

    @pytest.mark.parametrize("name", ["(1999) Title", "1999 - Title"])
    def test_year_title(self, parser, name):
        result = parser.parse(name)
        assert result.pattern == "year_title"
        assert result.artist is None
        assert result.title == "Title"
        assert result.year == 1999

    def test_artist_title(self, parser):
        result = parser.parse("Artist - Title (Carl Craig Remix)")
        assert result.pattern == "artist_title"
        assert result.artist == "Artist"
        assert result.title == "Title (Carl Craig Remix)"

    def test_title_only(self, parser):
        result = parser.parse("Just A Title")
        assert result.pattern == "title_only"
        assert result.artist is None
        assert result.title == "Just A Title"

    def test_underscores_read_as_spaces(self, parser):
        result = parser.parse("Artist_-_Title")
        assert (result.artist, result.title) == ("Artist", "Title")

    def test_matchers_are_pure_functions(self):
        assert match_scene_release("Artist - Title") is None
        assert match_scene_release("Jay-Z - The Blueprint") is None
        assert match_artist_title("Artist - Title").title == "Title"


class TestNoiseHandling:
    """Test rejection of system folders and bogus artists."""

    @pytest.mark.parametrize("name", ["incoming", "Downloads", "  _incoming ", "New Folder"])
    def test_noise_directory_yields_nothing(self, parser, name):
        assert parser.parse(name) is None

    def test_noise_artist_rejected(self, parser):
        result = parser.parse("Unknown Artist - Title")
        assert result.artist is None
        assert result.title == "Title"

    def test_compilation_artist_marks_compilation(self, parser):
        result = parser.parse("Various - Title (2001)")
        assert result.is_compilation is True
        assert result.artist == "Various Artists"

    @pytest.mark.parametrize("artist,valid", [
        ("Aphex Twin", True),
        ("01", False),
        ("1999", False),
        ("A", False),
        ("downloads", False),
        ("", False),
    ])
    def test_is_valid_artist(self, parser, artist, valid):
        assert parser.is_valid_artist(artist) is valid

    def test_custom_noise_values(self):
        parser = DirectoryNameParser(noise_values=["rips"])
        assert parser.parse("rips") is None
        assert parser.parse("incoming").title == "incoming"


class TestDiscNumber:
    """Test disc sub-folder recognition."""

    @pytest.mark.parametrize("name,expected", [
        ("CD1", 1),
        ("cd 2", 2),
        ("Disc 2", 2),
        ("Disk III", 3),
        ("disc_04", 4),
        ("Bonus", None),
        ("CD1 Extras", None),
    ])
    def test_disc_number(self, name, expected):
        assert DirectoryNameParser.disc_number(name) == expected
