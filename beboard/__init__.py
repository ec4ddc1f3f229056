"""
BeBoard — Community Board Backend
===================================
Posts, threaded comments, categories, friendships and goal "challenges"
(bet on yourself, submit daily progress, get verified by your peers),
with live notifications pushed to the browser over WebSockets.

Package layout::

    beboard/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Domain error kinds (mapped to HTTP in api.main)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── clock.py       # Injectable clock (system / fixed)
    │   ├── cache.py       # Explicit TTL cache + cross-process invalidation
    │   ├── listener.py    # PG LISTEN thread (reconnect + circuit breaker)
    │   └── notifications.py  # Notification publish + WebSocket fan-out
    ├── services/
    │   ├── comment_service.py    # Comment tree
    │   ├── challenge_service.py  # Challenge lifecycle
    │   ├── progress_service.py   # Daily progress + peer verification
    │   ├── category_service.py   # Cached categories
    │   ├── post_service.py       # Posts + bookmarks
    │   ├── user_service.py       # Accounts, credentials, profiles
    │   ├── friend_service.py     # Friend requests
    │   └── stats_service.py      # Admin dashboard counters
    └── api/
        ├── main.py        # FastAPI app
        ├── auth.py        # Register / login → JWT
        └── routes/        # REST + WebSocket endpoints
"""

__version__ = "1.0.0"
