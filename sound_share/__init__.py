"""
sound-share: Share ratings and reviews of Spotify music with friends.

This package lets a user log in with their Spotify account, browse their
listening history and top tracks/artists, rate and review songs and albums,
and keep a friends list in a shared real-time datastore.

Architecture:
    auth/       - Spotify login, secure credential storage, token refresh
    catalog/    - Spotify Web API access (profile, top items, search, ...)
    datastore/  - Real-time JSON tree (Firebase, SQLite or in-memory)
    social/     - Friend requests, approvals, removals, user search
    reviews.py  - Ratings and reviews of tracks and albums
    session.py  - Wires the services together for one run
    core/       - Configuration, logging, exceptions
    cli.py      - Command-line interface

Usage:
    Command Line:
        sound-share login
        sound-share top-tracks --limit 10
        sound-share friends add <user-id>
        sound-share reviews add <track-id> --rating 5 --text "Great song"

    Python API:
        from sound_share.core import load_config, setup_logging
        from sound_share.session import SessionContext

        config = load_config()
        setup_logging(config.logging.directory)

        with SessionContext.from_config(config) as session:
            session.manager.authenticate()
            session.graph.send_friend_request("bob")
            for friends in session.graph.watch_friends():
                print([friend.name for friend in friends])

Dependencies:
    - requests: Token endpoint and Firebase REST/streaming
    - spotipy: Spotify Web API client
    - keyring: OS secret storage for tokens
    - rich-click: CLI framework with colored help
    - tqdm: Progress bars
    - colorama: Colored console logs
    - pyyaml / python-dotenv: Configuration
"""

__version__ = "0.1.0"
__author__ = "sound-share"
__license__ = "MIT"
