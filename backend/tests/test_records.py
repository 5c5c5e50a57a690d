"""
Unit tests for convergence/records.py
"""

from datetime import date

import pytest
from pydantic import ValidationError

from convergence.records import ArtistRecord, EventRecord, VenueRecord, parse_record


class TestParseRecord:
    """Tests for parse_record()"""

    def test_dispatches_on_kind(self):
        record = parse_record({"kind": "venue", "source_code": "RA ", "source_venue_id": "v-1", "name": "Berghain"})
        assert isinstance(record, VenueRecord)
        assert record.source_code == "ra"
        assert record.source_key == "v-1"

    def test_kind_argument_overrides(self):
        record = parse_record({"source_code": "mb", "source_artist_id": "a-1", "name": "Ben Klock"}, kind="artist")
        assert isinstance(record, ArtistRecord)

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            parse_record({"kind": "concert", "source_code": "ra"})

    def test_blank_strings_through_tagged_union(self):
        record = parse_record({"kind": "event", "source_code": "ra", "source_event_id": "7",
                               "title": " ", "venue_city": "", "artists_json": [{"name": "DVS1", "image_url": ""}]})
        assert isinstance(record, EventRecord)
        assert record.kind == "event"
        assert record.title is None
        assert record.venue_city is None
        assert record.artists_json[0].image_url is None

    def test_undeclared_keys_ignored(self):
        record = parse_record({"kind": "artist", "source_code": "ra", "source_artist_id": "1",
                               "name": "Ben Klock", "followers": 12000})
        assert "followers" not in record.scraped_columns()


class TestEventRecord:
    """Tests for EventRecord normalization"""

    def _record(self, **overrides):
        payload = {"source_code": "ra", "source_event_id": 1001, "title": "Techno Night"}
        payload.update(overrides)
        return EventRecord.model_validate(payload)

    def test_dates_and_times(self):
        record = self._record(date="2024-05-01T22:00:00Z", start_time="2024-05-01T23:00:00", end_time="6:00")
        assert record.date == date(2024, 5, 1)
        assert record.start_time == "23:00:00"
        assert record.end_time == "06:00:00"

    def test_bad_date_rejected(self):
        with pytest.raises(ValidationError):
            self._record(date="next friday")

    def test_blank_strings_become_none(self):
        record = self._record(title="   ", venue_name="")
        assert record.title is None
        assert record.venue_name is None

    @pytest.mark.parametrize("lat, lon", [(0, 0), (0.0, 13.44), ("", 13.44), (52.51, None)])
    def test_unknown_position_dropped(self, lat, lon):
        record = self._record(venue_latitude=lat, venue_longitude=lon)
        assert (record.venue_latitude, record.venue_longitude) == (None, None)
        assert "venue_latitude" not in record.scraped_columns()

    def test_known_position_kept(self):
        record = self._record(venue_latitude="52.51", venue_longitude=13.44)
        assert (record.venue_latitude, record.venue_longitude) == (52.51, 13.44)

    def test_bad_coordinate_rejected(self):
        with pytest.raises(ValidationError):
            self._record(venue_latitude="north", venue_longitude=13.44)

    def test_nameless_participants_dropped(self):
        record = self._record(artists_json=[{"name": "Ben Klock"}, {"name": " "}, {}], organizers_json=None)
        assert [a.name for a in record.artists_json] == ["Ben Klock"]
        assert record.organizers_json == []

    def test_scraped_columns(self):
        record = self._record(
            price_info={"min": 20, "currency": "EUR"},
            venue_raw={"source_venue_id": "v-1"},
            raw_data={"b": 1, "a": 2},
        )
        columns = record.scraped_columns()
        assert columns["source_event_id"] == "1001"
        assert columns["price_info"] == {"min": 20.0, "currency": "EUR"}
        assert columns["raw_data"] == '{"a": 2, "b": 1}'
        assert "venue_raw" not in columns
        assert "kind" not in columns

    def test_records_are_frozen(self):
        record = self._record()
        with pytest.raises(ValidationError):
            record.title = "Other"


class TestVenueRecord:
    """Tests for VenueRecord validation"""

    def test_needs_name_or_address(self):
        with pytest.raises(ValidationError):
            VenueRecord.model_validate({"source_code": "ra", "source_venue_id": "v-1"})

    def test_address_alone_is_enough(self):
        record = VenueRecord.model_validate({"source_code": "ra", "source_venue_id": "v-1", "address": "Hauptstr. 1"})
        assert record.name is None
