"""
Unit tests for catalog number extraction.
"""

import pytest

from album_organizer.metadata.catalog import CatalogExtractor


@pytest.fixture
def extractor():
    return CatalogExtractor()


class TestExtract:
    """Test splitting trailing catalog tokens from titles."""

    @pytest.mark.parametrize("title,expected_title,expected_catalog", [
        ("Title (KOMPAKT123)", "Title", "KOMPAKT123"),
        ("Title [WARP-CD 45]", "Title", "WARP-CD 45"),
        ("Title [tresor.101]", "Title", "TRESOR.101"),
        ("Title [2MR-004]", "Title", "2MR-004"),
    ])
    def test_catalog_extracted(self, extractor, title, expected_title, expected_catalog):
        assert extractor.extract(title) == (expected_title, expected_catalog)

    @pytest.mark.parametrize("title", [
        "Title (Carl Craig Remix)",
        "Title (Remixes)",
        "Title (Club Mix)",
        "Title (Radio Edit)",
        "Title (Extended Version)",
        "Title (Instrumental)",
        "Title (Vocal 2)",
        "Title (12 inch)",
        "Title (12\" Vinyl)",
    ])
    def test_excluded_qualifiers_stay_in_title(self, extractor, title):
        assert extractor.extract(title) == (title, None)

    @pytest.mark.parametrize("title", [
        "Title (2004)",
        "Title (Vol 2)",
        "Title (Part 3)",
        "Title (Deluxe Edition)",
        "Title",
    ])
    def test_non_catalog_tokens_ignored(self, extractor, title):
        assert extractor.extract(title) == (title, None)

    def test_format_tags_stripped(self, extractor):
        assert extractor.extract("Title [FLAC]") == ("Title", None)
        assert extractor.extract("Title (KOMPAKT123) [WEB] [FLAC]") == ("Title", "KOMPAKT123")

    def test_bare_catalog_keeps_title(self, extractor):
        assert extractor.extract("(KOMPAKT123)") == ("(KOMPAKT123)", None)

    def test_custom_exclusions(self):
        extractor = CatalogExtractor([r"\bdub\b"])
        assert extractor.extract("Title (Dub 1)") == ("Title (Dub 1)", None)
        # Default exclusions are replaced, not extended
        assert extractor.is_excluded("Remix 2") is False


class TestValidate:
    """Test normalization of catalog candidates from tags or enrichment."""

    @pytest.mark.parametrize("candidate,expected", [
        (" kompakt 123 ", "KOMPAKT 123"),
        ("[abc123]", "ABC123"),
        ("none", None),
        ("N/A", None),
        ("", None),
        (None, None),
        ("Carl Craig Remix", None),
    ])
    def test_validate(self, extractor, candidate, expected):
        assert extractor.validate(candidate) == expected
