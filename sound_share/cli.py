"""
Command-line interface for sound-share.

This module implements the CLI using Click, one command per screen of the
app. rich-click is used for the output colors.

Commands:
    sound-share login                     Log in with Spotify (opens browser)
    sound-share logout                    Delete stored Spotify tokens
    sound-share status                    Show login state and token expiry
    sound-share me                        Show your Spotify profile
    sound-share top-tracks                Your top tracks
    sound-share top-artists               Your top artists
    sound-share recent                    Recently played tracks
    sound-share playlists                 Your playlists
    sound-share search <query>            Search tracks, albums, artists
    sound-share album <id>                Album details and track list
    sound-share artist <id>               Artist details and top tracks

    sound-share friends list|requests|add|approve|deny|remove|search|audit|repair|watch
    sound-share reviews list|add|delete|watch
    sound-share notices                   Show recorded problems

Options:
    --config <path>                       Use this config file instead of ./config.yaml
    --verbose                             Debug output on the console

Usage:
    sound-share login
    sound-share friends add 31abcdefghijklmnop
    sound-share friends requests
    sound-share friends approve 31abcdefghijklmnop
    sound-share reviews add 4cOdK2wGLETKBW3PvgPWqT --rating 5 --text "Classic"
    sound-share friends watch              # Ctrl-C to stop

Exit codes:
    0    success (including benign no-ops like "already friends")
    1    configuration or unexpected error
    2    datastore error (friend graph write may be incomplete)
    3    Spotify login or API error
    4    other sound-share error (invalid review, ...)
    130  interrupted
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Callable

import rich_click as click
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.COMMAND_GROUPS = {
    "cli": [
        {
            "name": "Account",
            "commands": ["login", "logout", "status", "me"],
        },
        {
            "name": "Music",
            "commands": ["top-tracks", "top-artists", "recent", "playlists", "search", "album", "artist"],
        },
        {
            "name": "Social",
            "commands": ["friends", "reviews", "notices"],
        },
    ],
}

from sound_share import __version__
from sound_share.catalog.client import SEARCH_TYPES
from sound_share.catalog.models import (
    AlbumSummary,
    ArtistSummary,
    PlayHistoryItem,
    PlaylistSummary,
    TrackSummary,
    items_of,
)
from sound_share.core.config import load_config
from sound_share.core.exceptions import (
    AuthCancelled,
    AuthError,
    CatalogRequestFailed,
    ConfigError,
    CredentialStoreError,
    DatastoreError,
    GraphWriteFailed,
    InvalidReview,
    NotAuthenticated,
    RefreshInvalid,
    ReviewWriteFailed,
    SoundShareError,
)
from sound_share.core.logger import (
    USER_NOTICES_FILENAME,
    get_logger,
    get_notice_board,
    log_user_notice,
    setup_logging,
    shutdown_logging,
)
from sound_share.reviews import MediaType, Review
from sound_share.session import SessionContext
from sound_share.social.graph import FriendActionResult, FriendEntry


logger = get_logger(__name__)


Action = Callable[[SessionContext], None]


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Show debug output on the console"
)
@click.version_option(__version__, prog_name="sound-share")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, verbose: bool) -> None:
    """
    sound-share: Rate and review Spotify music with your friends.

    \b
    GETTING STARTED:
        sound-share login                     # Authorize with Spotify
        sound-share top-tracks                # What you've been playing
        sound-share friends search <prefix>   # Find people
        sound-share friends add <user-id>     # Send a friend request
    """
    ctx.ensure_object(dict)
    # Tests swap these for fakes through CliRunner.invoke(obj=...)
    ctx.obj.setdefault("config_loader", load_config)
    ctx.obj.setdefault("session_factory", SessionContext.from_config)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


def _run(ctx: click.Context, action: Action) -> None:
    """
    Run one command against a fresh session.

    This is the single place where errors are caught. Expected failures
    are reported in one line (and as a user notice when they stop the
    user's action); unexpected ones are logged with a traceback.

    Raises:
        SystemExit: On any error, with the exit code documented above.
    """
    options = ctx.obj
    session: SessionContext | None = None

    try:
        config = options["config_loader"](options["config_path"])
        setup_logging(
            config.logging.directory,
            console_level="DEBUG" if options["verbose"] else config.logging.level
        )
        session = options["session_factory"](config)
        action(session)

    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    except NotAuthenticated:
        click.echo("Not logged in. Run 'sound-share login' first.", err=True)
        sys.exit(3)

    except AuthCancelled as e:
        click.echo(f"Login cancelled: {e.message}", err=True)
        sys.exit(3)

    except RefreshInvalid:
        log_user_notice(
            logger,
            "Your Spotify session has ended",
            "Run 'sound-share login' to log in again."
        )
        sys.exit(3)

    except (AuthError, CatalogRequestFailed, CredentialStoreError) as e:
        log_user_notice(logger, "Spotify request failed", e.message)
        logger.debug(f"Details: {e.details}", exc_info=True)
        sys.exit(3)

    except GraphWriteFailed as e:
        done = ", ".join(e.completed_steps) if e.completed_steps else "none"
        log_user_notice(
            logger,
            "Friend list update did not finish",
            f"{e.message} (completed steps: {done}). "
            "Run 'sound-share friends audit' to check for one-sided friendships."
        )
        sys.exit(2)

    except DatastoreError as e:
        log_user_notice(logger, "Datastore request failed", e.message)
        logger.debug(f"Details: {e.details}", exc_info=True)
        sys.exit(2)

    except InvalidReview as e:
        click.echo(f"Invalid review: {e.message}", err=True)
        sys.exit(4)

    except ReviewWriteFailed as e:
        log_user_notice(logger, "Review was not saved", e.message)
        sys.exit(4)

    except SoundShareError as e:
        click.echo(f"Error: {e.message}", err=True)
        logger.error(f"Error: {e.message}", exc_info=True)
        sys.exit(4)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        logger.info("Interrupted by user")
        sys.exit(130)

    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        logger.exception("Unexpected error")
        sys.exit(1)

    finally:
        if session is not None:
            session.close()
        _summarize_notices()
        shutdown_logging()


def _summarize_notices() -> None:
    """Point at the notices log when this run recorded any."""
    count = get_notice_board().dismiss_all()
    if count:
        click.echo(
            f"{count} notice(s) recorded. Run 'sound-share notices' to review them.",
            err=True
        )


# =============================================================================
# Formatting helpers
# =============================================================================

def _format_duration(duration_ms: int) -> str:
    seconds = duration_ms // 1000
    return f"{seconds // 60}:{seconds % 60:02d}"


def _format_track(index: int, track: TrackSummary) -> str:
    return f"{index:>3}. {track.name} - {', '.join(track.artists) or track.artist} ({_format_duration(track.duration_ms)})"


def _format_entries(entries: list[FriendEntry], empty: str) -> None:
    if not entries:
        click.echo(empty)
        return
    for entry in entries:
        click.echo(f"  {entry.name}  [{entry.id}]")


def _echo_result(result: FriendActionResult) -> None:
    if result.changed:
        click.secho(result.message, fg="green")
    else:
        click.echo(result.message)


def _stars(rating: int) -> str:
    return "★" * rating + "☆" * (5 - rating)


# =============================================================================
# Account
# =============================================================================

@cli.command()
@click.pass_context
def login(ctx: click.Context) -> None:
    """Log in with your Spotify account."""
    def action(session: SessionContext) -> None:
        session.manager.authenticate()
        identity = session.identity()
        click.secho(f"Logged in as {identity.display_name} ({identity.id})", fg="green")
    _run(ctx, action)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Delete the stored Spotify tokens."""
    def action(session: SessionContext) -> None:
        session.manager.log_out()
        click.echo("Logged out.")
    _run(ctx, action)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show login state and when the access token expires."""
    def action(session: SessionContext) -> None:
        credential = session.manager.stored_credential()
        click.echo(f"State: {session.manager.state.value}")
        if credential is None:
            click.echo("No Spotify credential stored.")
            return
        if credential.expires_at_ms:
            expires = datetime.fromtimestamp(credential.expires_at_ms / 1000)
            click.echo(f"Access token expires: {expires:%Y-%m-%d %H:%M:%S}")
        else:
            click.echo("Access token expiry unknown (will refresh on next use)")
    _run(ctx, action)


@cli.command()
@click.pass_context
def me(ctx: click.Context) -> None:
    """Show your Spotify profile."""
    def action(session: SessionContext) -> None:
        profile = session.catalog.current_user_profile()
        click.echo(f"Name:      {profile.get('display_name') or profile.get('id')}")
        click.echo(f"User id:   {profile.get('id')}")
        if profile.get("email"):
            click.echo(f"Email:     {profile['email']}")
        if profile.get("country"):
            click.echo(f"Country:   {profile['country']}")
        followers = (profile.get("followers") or {}).get("total")
        if followers is not None:
            click.echo(f"Followers: {followers}")
    _run(ctx, action)


# =============================================================================
# Music
# =============================================================================

@cli.command("top-tracks")
@click.option("--limit", type=click.IntRange(1, 50), default=20, show_default=True)
@click.pass_context
def top_tracks(ctx: click.Context, limit: int) -> None:
    """Your most played tracks."""
    def action(session: SessionContext) -> None:
        tracks = [
            TrackSummary.from_spotify_data(item)
            for item in items_of(session.catalog.current_user_top_tracks(limit=limit))
        ]
        if not tracks:
            click.echo("No top tracks yet.")
        for index, track in enumerate(tracks, 1):
            click.echo(_format_track(index, track))
    _run(ctx, action)


@cli.command("top-artists")
@click.option("--limit", type=click.IntRange(1, 50), default=20, show_default=True)
@click.pass_context
def top_artists(ctx: click.Context, limit: int) -> None:
    """Your most played artists."""
    def action(session: SessionContext) -> None:
        artists = [
            ArtistSummary.from_spotify_data(item)
            for item in items_of(session.catalog.current_user_top_artists(limit=limit))
        ]
        if not artists:
            click.echo("No top artists yet.")
        for index, artist in enumerate(artists, 1):
            genres = f" ({', '.join(artist.genres[:3])})" if artist.genres else ""
            click.echo(f"{index:>3}. {artist.name}{genres}  [{artist.spotify_id}]")
    _run(ctx, action)


@cli.command()
@click.option("--limit", type=click.IntRange(1, 50), default=20, show_default=True)
@click.pass_context
def recent(ctx: click.Context, limit: int) -> None:
    """Recently played tracks."""
    def action(session: SessionContext) -> None:
        history = [
            PlayHistoryItem.from_spotify_data(item)
            for item in items_of(session.catalog.current_user_recently_played(limit=limit))
        ]
        if not history:
            click.echo("Nothing played recently.")
        for item in history:
            click.echo(f"  {item.played_at[:16].replace('T', ' ')}  {item.track.name} - {item.track.artist}")
    _run(ctx, action)


@cli.command()
@click.option("--limit", type=click.IntRange(1, 50), default=50, show_default=True)
@click.pass_context
def playlists(ctx: click.Context, limit: int) -> None:
    """Your playlists."""
    def action(session: SessionContext) -> None:
        found = [
            PlaylistSummary.from_spotify_data(item)
            for item in items_of(session.catalog.current_user_playlists(limit=limit))
        ]
        if not found:
            click.echo("No playlists.")
        for playlist in found:
            click.echo(f"  {playlist.name} ({playlist.tracks_total} tracks, by {playlist.owner})")
    _run(ctx, action)


@cli.command()
@click.argument("query")
@click.option(
    "--type", "search_type",
    type=click.Choice(SEARCH_TYPES),
    default="track",
    show_default=True
)
@click.option("--limit", type=click.IntRange(1, 50), default=10, show_default=True)
@click.pass_context
def search(ctx: click.Context, query: str, search_type: str, limit: int) -> None:
    """Search the Spotify catalog."""
    def action(session: SessionContext) -> None:
        results = items_of(
            session.catalog.search(query, search_type=search_type, limit=limit),
            key=f"{search_type}s"
        )
        if not results:
            click.echo("No results.")
            return
        for index, item in enumerate(results, 1):
            if search_type == "track":
                track = TrackSummary.from_spotify_data(item)
                click.echo(f"{_format_track(index, track)}  [{track.spotify_id}]")
            elif search_type == "album":
                album = AlbumSummary.from_spotify_data(item)
                click.echo(f"{index:>3}. {album.name} - {album.artist} ({album.year or '?'})  [{album.spotify_id}]")
            elif search_type == "artist":
                artist = ArtistSummary.from_spotify_data(item)
                click.echo(f"{index:>3}. {artist.name}  [{artist.spotify_id}]")
            else:
                playlist = PlaylistSummary.from_spotify_data(item)
                click.echo(f"{index:>3}. {playlist.name} (by {playlist.owner})  [{playlist.spotify_id}]")
    _run(ctx, action)


@cli.command()
@click.argument("album_id")
@click.pass_context
def album(ctx: click.Context, album_id: str) -> None:
    """Album details and its tracks."""
    def action(session: SessionContext) -> None:
        album_data = session.catalog.album(album_id)
        summary = AlbumSummary.from_spotify_data(album_data)
        click.secho(f"{summary.name} - {summary.artist}", bold=True)
        click.echo(f"Released {summary.release_date or 'unknown'}, {summary.total_tracks} tracks")
        tracks = items_of(session.catalog.album_tracks(album_id))
        for index, item in enumerate(tracks, 1):
            click.echo(_format_track(index, TrackSummary.from_spotify_data(item, album_data)))
    _run(ctx, action)


@cli.command()
@click.argument("artist_id")
@click.pass_context
def artist(ctx: click.Context, artist_id: str) -> None:
    """Artist details and top tracks."""
    def action(session: SessionContext) -> None:
        summary = ArtistSummary.from_spotify_data(session.catalog.artist(artist_id))
        click.secho(summary.name, bold=True)
        if summary.genres:
            click.echo(f"Genres: {', '.join(summary.genres)}")
        top = session.catalog.artist_top_tracks(artist_id)
        for index, item in enumerate(top.get("tracks", []), 1):
            click.echo(_format_track(index, TrackSummary.from_spotify_data(item)))
    _run(ctx, action)


# =============================================================================
# Friends
# =============================================================================

@cli.group()
def friends() -> None:
    """Friend requests, approvals and your friends list."""


@friends.command("list")
@click.pass_context
def friends_list(ctx: click.Context) -> None:
    """Show your friends."""
    def action(session: SessionContext) -> None:
        _format_entries(session.graph.list_friends(), "No friends added yet.")
    _run(ctx, action)


@friends.command("requests")
@click.pass_context
def friends_requests(ctx: click.Context) -> None:
    """Show pending friend requests."""
    def action(session: SessionContext) -> None:
        _format_entries(session.graph.list_friend_requests(), "No pending friend requests.")
    _run(ctx, action)


@friends.command("add")
@click.argument("user_id")
@click.pass_context
def friends_add(ctx: click.Context, user_id: str) -> None:
    """Send a friend request."""
    _run(ctx, lambda session: _echo_result(session.graph.send_friend_request(user_id)))


@friends.command("approve")
@click.argument("user_id")
@click.pass_context
def friends_approve(ctx: click.Context, user_id: str) -> None:
    """Approve a pending friend request."""
    _run(ctx, lambda session: _echo_result(session.graph.approve_friend_request(user_id)))


@friends.command("deny")
@click.argument("user_id")
@click.pass_context
def friends_deny(ctx: click.Context, user_id: str) -> None:
    """Deny a pending friend request."""
    _run(ctx, lambda session: _echo_result(session.graph.deny_friend_request(user_id)))


@friends.command("remove")
@click.argument("user_id")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def friends_remove(ctx: click.Context, user_id: str, yes: bool) -> None:
    """Remove a friend (both directions)."""
    def action(session: SessionContext) -> None:
        if not yes and not click.confirm(f"Remove {user_id} from your friends?"):
            click.echo("Cancelled.")
            return
        _echo_result(session.graph.remove_friend(user_id))
    _run(ctx, action)


@friends.command("search")
@click.argument("prefix", required=False, default="")
@click.pass_context
def friends_search(ctx: click.Context, prefix: str) -> None:
    """Find users by id prefix (no prefix lists everyone)."""
    def action(session: SessionContext) -> None:
        users = session.graph.search_users(prefix)
        if not users:
            click.echo("No users found.")
        for user in users:
            click.echo(f"  {user.name}  [{user.id}]  {user.review_count} review(s)")
    _run(ctx, action)


@friends.command("audit")
@click.pass_context
def friends_audit(ctx: click.Context) -> None:
    """Find one-sided friendships left by interrupted updates."""
    def action(session: SessionContext) -> None:
        issues = session.graph.audit_friendships()
        if not issues:
            click.secho("All friendships are consistent.", fg="green")
            return
        for issue in issues:
            side = "you list them only" if issue.state.value == "outgoing_only" else "they list you only"
            click.echo(f"  {issue.name}  [{issue.peer_id}]  {side}")
        click.echo("Run 'sound-share friends repair <user-id>' to fix one.")
    _run(ctx, action)


@friends.command("repair")
@click.argument("user_id")
@click.pass_context
def friends_repair(ctx: click.Context, user_id: str) -> None:
    """Finish an interrupted approve or remove."""
    _run(ctx, lambda session: _echo_result(session.graph.repair_friendship(user_id)))


@friends.command("watch")
@click.option("--requests", "watch_requests", is_flag=True, help="Watch pending requests instead")
@click.pass_context
def friends_watch(ctx: click.Context, watch_requests: bool) -> None:
    """Print the friends list every time it changes (Ctrl-C to stop)."""
    def action(session: SessionContext) -> None:
        subscription = (
            session.graph.watch_friend_requests() if watch_requests else session.graph.watch_friends()
        )
        label = "Friend requests" if watch_requests else "Friends"
        with subscription:
            try:
                for entries in subscription:
                    click.secho(f"{label} ({datetime.now():%H:%M:%S}):", bold=True)
                    _format_entries(entries, "  (none)")
            except KeyboardInterrupt:
                click.echo("Stopped watching.")
    _run(ctx, action)


# =============================================================================
# Reviews
# =============================================================================

@cli.group()
def reviews() -> None:
    """Rate and review tracks and albums."""


def _print_reviews(session: SessionContext, found: list[Review]) -> None:
    if not found:
        click.echo("No reviews added yet.")
        return
    described = session.reviews.describe_reviews(
        tqdm(found, desc="Looking up titles", unit="review", leave=False),
        session.catalog
    )
    for item in described:
        review = item.review
        kind = "album" if review.media_type is MediaType.ALBUM else "track"
        by = f" - {item.artist}" if item.artist else ""
        click.echo(f"{_stars(review.rating)}  {item.title}{by} ({kind})  [{review.review_id}]")
        if review.text:
            click.echo(f"      {review.text}")


@reviews.command("list")
@click.option("--user", "user_id", default=None, help="Show another user's reviews")
@click.pass_context
def reviews_list(ctx: click.Context, user_id: str | None) -> None:
    """Show reviews, newest first."""
    _run(ctx, lambda session: _print_reviews(session, session.reviews.list_reviews(user_id)))


@reviews.command("add")
@click.argument("item_id")
@click.option(
    "--type", "media_type",
    type=click.Choice(["track", "album"]),
    default="track",
    show_default=True
)
@click.option("--rating", type=click.IntRange(1, 5), required=True, help="1 to 5 stars")
@click.option("--text", default="", help="Review text")
@click.pass_context
def reviews_add(ctx: click.Context, item_id: str, media_type: str, rating: int, text: str) -> None:
    """Review a track or album."""
    def action(session: SessionContext) -> None:
        review = session.reviews.add_review(item_id, media_type, rating, text)
        click.secho(f"Saved review {review.review_id} ({_stars(review.rating)})", fg="green")
    _run(ctx, action)


@reviews.command("delete")
@click.argument("review_id")
@click.option("--yes", "-y", is_flag=True, help="Don't ask for confirmation")
@click.pass_context
def reviews_delete(ctx: click.Context, review_id: str, yes: bool) -> None:
    """Delete one of your reviews."""
    def action(session: SessionContext) -> None:
        if not yes and not click.confirm(f"Delete review {review_id}?"):
            click.echo("Cancelled.")
            return
        if session.reviews.delete_review(review_id):
            click.secho("Review deleted.", fg="green")
        else:
            click.echo("No such review.")
    _run(ctx, action)


@reviews.command("watch")
@click.option("--user", "user_id", default=None, help="Watch another user's reviews")
@click.pass_context
def reviews_watch(ctx: click.Context, user_id: str | None) -> None:
    """Print reviews every time they change (Ctrl-C to stop)."""
    def action(session: SessionContext) -> None:
        with session.reviews.watch_reviews(user_id) as subscription:
            try:
                for found in subscription:
                    click.secho(f"Reviews ({datetime.now():%H:%M:%S}):", bold=True)
                    _print_reviews(session, found)
            except KeyboardInterrupt:
                click.echo("Stopped watching.")
    _run(ctx, action)


# =============================================================================
# Notices
# =============================================================================

@cli.command()
@click.option("--clear", is_flag=True, help="Delete recorded notices")
@click.pass_context
def notices(ctx: click.Context, clear: bool) -> None:
    """Show problems recorded by earlier commands."""
    try:
        config = ctx.obj["config_loader"](ctx.obj["config_path"])
    except ConfigError as e:
        click.echo(f"Configuration error: {e.message}", err=True)
        sys.exit(1)

    notices_path = config.logging.directory / USER_NOTICES_FILENAME
    if not notices_path.exists() or notices_path.stat().st_size == 0:
        click.echo("No notices.")
        return

    if clear:
        notices_path.write_text("", encoding="utf-8")
        click.echo("Notices cleared.")
        return

    click.echo(notices_path.read_text(encoding="utf-8").rstrip())


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `sound-share` from the command line.
    """
    cli()


if __name__ == "__main__":
    main()
