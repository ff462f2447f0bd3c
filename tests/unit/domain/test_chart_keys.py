"""Tests for entry keys, slugs and the chart enums."""

import pytest

from groupcharts.domain.entities import ChartMode, ChartType, RecordType, SnapshotItem
from groupcharts.domain.exceptions import (
    UnsupportedChartTypeError,
    UnsupportedRecordTypeError,
    ValidationException,
)
from groupcharts.domain.value_objects.chart_keys import (
    make_entry_key,
    slugify_entry_key,
    split_entry_key,
)


class TestEntryKeys:
    """Test make_entry_key / split_entry_key."""

    def test_artist_key_is_lowercased_name(self) -> None:
        assert make_entry_key("  Radiohead ", None, ChartType.ARTISTS) == "radiohead"

    def test_artist_key_ignores_artist_argument(self) -> None:
        assert make_entry_key("Radiohead", "Someone", ChartType.ARTISTS) == "radiohead"

    def test_track_key_includes_artist(self) -> None:
        key = make_entry_key("Karma Police", "Radiohead", ChartType.TRACKS)
        assert key == "karma police|radiohead"

    @pytest.mark.parametrize("chart_type", [ChartType.TRACKS, ChartType.ALBUMS])
    def test_track_and_album_keys_are_trimmed(self, chart_type: ChartType) -> None:
        padded = make_entry_key(" Song A ", "Artist X  ", chart_type)
        assert padded == make_entry_key("Song A", "Artist X", chart_type)
        assert padded == "song a|artist x"

    def test_same_title_different_artist_is_different_entry(self) -> None:
        a = make_entry_key("Intro", "The xx", ChartType.TRACKS)
        b = make_entry_key("Intro", "M83", ChartType.TRACKS)
        assert a != b

    def test_split_round_trips_track_key(self) -> None:
        assert split_entry_key("karma police|radiohead") == ("karma police", "radiohead")
        assert split_entry_key("radiohead") == ("radiohead", None)


class TestSlugs:
    """Test slugify_entry_key."""

    def test_accents_are_stripped(self) -> None:
        assert slugify_entry_key("beyoncé", ChartType.ARTISTS) == "beyonce"

    def test_track_pipe_becomes_dash(self) -> None:
        slug = slugify_entry_key("karma police|radiohead", ChartType.TRACKS)
        assert slug == "karma-police-radiohead"

    def test_punctuation_is_dropped(self) -> None:
        assert slugify_entry_key("ac/dc!", ChartType.ARTISTS) == "acdc"

    def test_non_latin_keys_fall_back_to_stable_hash(self) -> None:
        """Keys that slugify to nothing still get a usable, stable slug."""
        first = slugify_entry_key("東京事変", ChartType.ARTISTS)
        second = slugify_entry_key("東京事変", ChartType.ARTISTS)

        assert first.startswith("entry-")
        assert first == second
        assert first != slugify_entry_key("椎名林檎", ChartType.ARTISTS)


class TestEnums:
    """Parsing errors surface as validation errors."""

    def test_chart_type_parse_is_case_insensitive(self) -> None:
        assert ChartType.parse("TRACKS") is ChartType.TRACKS

    def test_unknown_chart_type(self) -> None:
        with pytest.raises(UnsupportedChartTypeError) as exc_info:
            ChartType.parse("songs")
        assert isinstance(exc_info.value, ValidationException)
        assert exc_info.value.chart_type == "songs"

    def test_unknown_record_type(self) -> None:
        with pytest.raises(UnsupportedRecordTypeError):
            RecordType.parse("most-vibes-ever")

    def test_record_type_metadata(self) -> None:
        assert RecordType.MOST_WEEKS_AT_ONE.display_name == "Most Weeks at #1"
        assert RecordType.ARTIST_MOST_SONGS_CHARTED.is_artist_record is True
        assert RecordType.MOST_PLAYS.is_artist_record is False

    def test_unknown_chart_mode(self) -> None:
        with pytest.raises(ValidationException):
            ChartMode.parse("loudest")

    def test_negative_playcount_rejected(self) -> None:
        with pytest.raises(ValidationException):
            SnapshotItem(name="Song", playcount=-1)

    def test_blank_item_name_rejected(self) -> None:
        with pytest.raises(ValidationException):
            SnapshotItem(name="   ", playcount=3)
