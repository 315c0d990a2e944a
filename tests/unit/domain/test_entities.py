"""Unit tests for domain entities."""

from datetime import UTC, datetime, timedelta

from helpers import album_payload, artist_payload

from soundtrack.domain.entities import (
    Album,
    Artist,
    Credential,
    TokenResult,
    Track,
    parse_played_at,
)
from soundtrack.domain.value_objects import AlbumType

NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)


class TestCredential:
    """Tests for Credential completeness and refresh decision."""

    def test_complete_credential(self) -> None:
        """All three fields present -> complete."""
        cred = Credential(
            user_id=1, access_token="a", refresh_token="r", expires_at=NOW
        )
        assert cred.is_complete is True

    def test_partial_credentials_are_incomplete(self) -> None:
        """Any missing piece makes the credential unusable."""
        assert not Credential(user_id=1).is_complete
        assert not Credential(user_id=1, refresh_token="r", expires_at=NOW).is_complete
        assert not Credential(user_id=1, access_token="a", expires_at=NOW).is_complete
        assert not Credential(user_id=1, access_token="a", refresh_token="r").is_complete
        assert not Credential(
            user_id=1, access_token="", refresh_token="r", expires_at=NOW
        ).is_complete

    def test_token_pair_only_for_complete_credentials(self) -> None:
        """Complete -> (access, refresh); any missing piece -> None."""
        cred = Credential(user_id=1, access_token="a", refresh_token="r", expires_at=NOW)
        assert cred.token_pair() == ("a", "r")
        assert Credential(user_id=1, access_token="a", refresh_token="r").token_pair() is None
        assert Credential(user_id=1, refresh_token="r", expires_at=NOW).token_pair() is None

    def test_refresh_needed_inside_skew(self) -> None:
        """Expiry 119s away is inside the 120s skew -> refresh."""
        cred = Credential(
            user_id=1,
            access_token="a",
            refresh_token="r",
            expires_at=NOW + timedelta(seconds=119),
        )
        assert cred.needs_refresh(NOW) is True

    def test_no_refresh_outside_skew(self) -> None:
        """Expiry 121s away is still fine."""
        cred = Credential(
            user_id=1,
            access_token="a",
            refresh_token="r",
            expires_at=NOW + timedelta(seconds=121),
        )
        assert cred.needs_refresh(NOW) is False

    def test_expired_token_needs_refresh(self) -> None:
        """Past expiry -> refresh."""
        cred = Credential(
            user_id=1, access_token="a", refresh_token="r", expires_at=NOW - timedelta(hours=1)
        )
        assert cred.needs_refresh(NOW) is True

    def test_naive_expiry_is_treated_as_utc(self) -> None:
        """Values read back from SQLite are naive UTC."""
        naive = (NOW + timedelta(hours=1)).replace(tzinfo=None)
        cred = Credential(user_id=1, access_token="a", refresh_token="r", expires_at=naive)
        assert cred.needs_refresh(NOW) is False

    def test_missing_expiry_needs_refresh(self) -> None:
        """No expiry at all -> refresh."""
        assert Credential(user_id=1, access_token="a").needs_refresh(NOW) is True


class TestTokenResult:
    """Tests for TokenResult."""

    def test_expires_at_is_relative_to_receipt(self) -> None:
        """expires_at = now + expires_in."""
        result = TokenResult(access_token="a", expires_in=3600)
        assert result.expires_at(NOW) == NOW + timedelta(hours=1)
        assert result.refresh_token is None


class TestParsePlayedAt:
    """Tests for parse_played_at()."""

    def test_z_suffix(self) -> None:
        """Trailing Z is UTC, milliseconds are kept."""
        parsed = parse_played_at("2024-03-01T12:00:00.123Z")
        assert parsed == datetime(2024, 3, 1, 12, 0, 0, 123000, tzinfo=UTC)

    def test_offset_is_converted_to_utc(self) -> None:
        """Explicit offsets are normalised to UTC."""
        parsed = parse_played_at("2024-03-01T14:00:00+02:00")
        assert parsed == datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)
        assert parsed.tzinfo == UTC

    def test_naive_value_is_utc(self) -> None:
        """No offset at all -> assume UTC."""
        assert parse_played_at("2024-03-01T12:00:00") == datetime(
            2024, 3, 1, 12, 0, 0, tzinfo=UTC
        )


class TestFromProvider:
    """Tests for building entities from provider payloads."""

    def test_artist_takes_first_image(self) -> None:
        """image_url comes from the first image."""
        artist = Artist.from_provider(artist_payload("ar9", "Someone"))
        assert artist.id == "ar9"
        assert artist.name == "Someone"
        assert artist.image_url == "https://img.example/ar9.jpg"

    def test_artist_without_images(self) -> None:
        """No images -> None."""
        artist = Artist.from_provider({"id": "x", "name": "X", "images": []})
        assert artist.image_url is None

    def test_album_fields(self) -> None:
        """Release year, type and owner artist are parsed."""
        album = Album.from_provider(
            album_payload("al9", total_tracks=12, album_type="single", release_date="1999")
        )
        assert album.artist_id == "ar1"
        assert album.type is AlbumType.SINGLE
        assert album.track_count == 12
        assert album.release_year == 1999
        assert album.artwork_url == "https://img.example/al9.jpg"

    def test_album_owner_override_and_missing_date(self) -> None:
        """Explicit artist_id wins; missing release date -> None."""
        data = album_payload("al9", album_type="appears_on")
        data["release_date"] = None
        album = Album.from_provider(data, artist_id="other")
        assert album.artist_id == "other"
        assert album.release_year is None
        assert album.type is AlbumType.ALBUM

    def test_track_defaults_duration(self) -> None:
        """Missing duration -> 0."""
        track = Track.from_provider({"id": "t", "name": "T"}, album_id="al1")
        assert track.duration_ms == 0
        assert track.album_id == "al1"
