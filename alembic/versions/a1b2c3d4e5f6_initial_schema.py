"""initial schema: users, catalog and playback event log

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000

Hey future me - this is the WHOLE schema in one go!

TABLES:
- users: profile + credential columns (access token, refresh token, expiry)
- artists -> albums -> tracks: catalog, provider ids as primary keys
- playback_events: append-only log, one row per play

KEY DESIGN DECISIONS:
1. UNIQUE (user_id, track_id, played_at) on playback_events IS the dedup mechanism.
   Overlapping poll windows insert with ON CONFLICT DO NOTHING.
2. played_at and all other timestamps are naive UTC (SQLite has no timezone type).
3. playback_events.user_id cascades on delete, catalog rows are shared and never
   deleted with a user.
4. Slugs are unique per table - they end up in URLs.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("spotify_access_token", sa.Text(), nullable=True),
        sa.Column("spotify_refresh_token", sa.Text(), nullable=True),
        sa.Column("spotify_token_expires_at", sa.DateTime(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    op.create_table(
        "artists",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("slug", sa.String(600), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("slug", name="uq_artists_slug"),
    )

    op.create_table(
        "albums",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="album"),
        sa.Column("track_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("release_year", sa.Integer(), nullable=True),
        sa.Column("artwork_url", sa.Text(), nullable=True),
        sa.Column(
            "artist_id",
            sa.String(64),
            sa.ForeignKey("artists.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("slug", sa.String(600), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("slug", name="uq_albums_slug"),
    )
    op.create_index("ix_albums_artist_id", "albums", ["artist_id"])

    op.create_table(
        "tracks",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(512), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "album_id",
            sa.String(64),
            sa.ForeignKey("albums.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("slug", sa.String(600), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("slug", name="uq_tracks_slug"),
    )
    op.create_index("ix_tracks_album_id", "tracks", ["album_id"])

    op.create_table(
        "playback_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "track_id", sa.String(64), sa.ForeignKey("tracks.id"), nullable=False
        ),
        sa.Column("played_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id",
            "track_id",
            "played_at",
            name="uq_playback_events_user_track_time",
        ),
    )
    op.create_index(
        "ix_playback_events_user_played_at",
        "playback_events",
        ["user_id", "played_at"],
    )
    op.create_index("ix_playback_events_track_id", "playback_events", ["track_id"])


def downgrade() -> None:
    """Drop all tables (children first)."""
    op.drop_index("ix_playback_events_track_id", table_name="playback_events")
    op.drop_index("ix_playback_events_user_played_at", table_name="playback_events")
    op.drop_table("playback_events")
    op.drop_index("ix_tracks_album_id", table_name="tracks")
    op.drop_table("tracks")
    op.drop_index("ix_albums_artist_id", table_name="albums")
    op.drop_table("albums")
    op.drop_table("artists")
    op.drop_table("users")
