"""
Normalized scraped-record shapes.

Source adapters (outside this package) translate each site's payload into
one of these variants. Each variant is tagged by `kind` and declares its
complete optional-field set; nothing downstream looks for other keys.

raw_data is carried as an opaque string and never parsed here.
"""
import datetime as dt
import json
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from utils.normalize import coordinate_pair, extract_time, to_date


class RecordModel(BaseModel):
    """
    Base for all normalized records.

    - frozen: records are never mutated after validation
    - blank strings become None
    - undeclared keys are ignored
    """
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True,
        populate_by_name=True,
        extra='ignore',
        coerce_numbers_to_str=True,
    )

    @model_validator(mode='before')
    @classmethod
    def blank_to_none(cls, data):
        if not isinstance(data, dict):
            return data
        return {
            key: None if isinstance(value, str) and not value.strip() else value
            for key, value in data.items()
        }


def _known_position(data, lat_key: str, lon_key: str):
    """Drop a coordinate pair that does not locate anything."""
    if not isinstance(data, dict) or (lat_key not in data and lon_key not in data):
        return data
    lat, lon = [
        None if isinstance(value, str) and not value.strip() else value
        for value in (data.get(lat_key), data.get(lon_key))
    ]
    if coordinate_pair(lat, lon) is None:
        return {**data, lat_key: None, lon_key: None}
    return data


class SourceRecord(RecordModel):
    source_code: str
    raw_data: Optional[str] = None

    # Name of the per-source id field on this variant
    SOURCE_ID_FIELD: ClassVar[str] = "source_id"

    @field_validator('source_code', mode='before')
    @classmethod
    def lower_source_code(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('raw_data', mode='before')
    @classmethod
    def opaque_payload(cls, v):
        if v is None or isinstance(v, str):
            return v
        return json.dumps(v, default=str, sort_keys=True)

    @property
    def source_key(self) -> str:
        return getattr(self, self.SOURCE_ID_FIELD)

    def scraped_columns(self) -> Dict[str, Any]:
        """Values for the scraped table, None fields omitted."""
        return self.model_dump(exclude={"kind", "venue_raw"}, exclude_none=True)


class ArtistRef(RecordModel):
    name: str
    source_artist_id: Optional[str] = None
    genres: Optional[List[str]] = None
    image_url: Optional[str] = None
    content_url: Optional[str] = None


class OrganizerRef(RecordModel):
    name: str
    source_organizer_id: Optional[str] = None
    description: Optional[str] = None
    content_url: Optional[str] = None
    image_url: Optional[str] = None


class PriceInfo(RecordModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: Optional[str] = None


class EventRecord(SourceRecord):
    kind: Literal["event"] = "event"
    SOURCE_ID_FIELD: ClassVar[str] = "source_event_id"

    source_event_id: str
    title: Optional[str] = None
    date: Optional[dt.date] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    content_url: Optional[str] = None
    ticket_url: Optional[str] = None
    flyer_front: Optional[str] = None
    description: Optional[str] = None
    venue_name: Optional[str] = None
    venue_address: Optional[str] = None
    venue_postal_code: Optional[str] = None
    venue_city: Optional[str] = None
    venue_country: Optional[str] = None
    venue_latitude: Optional[float] = None
    venue_longitude: Optional[float] = None
    artists_json: List[ArtistRef] = Field(default_factory=list)
    organizers_json: List[OrganizerRef] = Field(default_factory=list)
    price_info: Optional[PriceInfo] = None

    # Full venue details when the source exposes them
    venue_raw: Optional[Dict[str, Any]] = None

    @model_validator(mode='before')
    @classmethod
    def unknown_position(cls, data):
        return _known_position(data, "venue_latitude", "venue_longitude")

    @field_validator('date', mode='before')
    @classmethod
    def parse_date(cls, v):
        return to_date(v, field='date')

    @field_validator('start_time', 'end_time', mode='before')
    @classmethod
    def parse_time(cls, v):
        return extract_time(v)

    @field_validator('artists_json', 'organizers_json', mode='before')
    @classmethod
    def drop_nameless(cls, v):
        if v is None:
            return []
        return [item for item in v if not isinstance(item, dict) or (item.get("name") or "").strip()]


class VenueRecord(SourceRecord):
    kind: Literal["venue"] = "venue"
    SOURCE_ID_FIELD: ClassVar[str] = "source_venue_id"

    source_venue_id: str
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    content_url: Optional[str] = None
    description: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def unknown_position(cls, data):
        return _known_position(data, "latitude", "longitude")

    @model_validator(mode='after')
    def require_name_or_address(self):
        if not self.name and not self.address:
            raise ValueError("venue needs a name or an address")
        return self


class ArtistRecord(SourceRecord):
    kind: Literal["artist"] = "artist"
    SOURCE_ID_FIELD: ClassVar[str] = "source_artist_id"

    source_artist_id: str
    name: str
    country: Optional[str] = None
    artist_type: Optional[str] = None
    genres: Optional[List[str]] = None
    image_url: Optional[str] = None
    content_url: Optional[str] = None
    bio: Optional[str] = None
    website: Optional[str] = None
    instagram_url: Optional[str] = None
    soundcloud_url: Optional[str] = None
    spotify_url: Optional[str] = None


class OrganizerRecord(SourceRecord):
    kind: Literal["organizer"] = "organizer"
    SOURCE_ID_FIELD: ClassVar[str] = "source_id"

    source_id: str
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    url: Optional[str] = None


ScrapedRecordIn = Annotated[
    Union[EventRecord, VenueRecord, ArtistRecord, OrganizerRecord],
    Field(discriminator="kind"),
]

_record_adapter = TypeAdapter(ScrapedRecordIn)


def parse_record(payload: Dict[str, Any], kind: Optional[str] = None):
    """
    Validate one normalized payload into its tagged variant.

    Raises:
        pydantic.ValidationError: payload does not fit the variant
    """
    if kind is not None:
        payload = {**payload, "kind": kind}
    return _record_adapter.validate_python(payload)
