"""
HabitLoop — Challenge Participation & Rewards Ledger
=====================================================
Backend core for a habit-tracking social app: users create or join
challenges, prove each day's completion with a photo, earn points,
redeem points for currency, and chat with fellow members in real time.

Package layout::

    habitloop/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Domain error taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (5 tables)
    ├── engine/
    │   ├── events.py      # ChatEvent envelope + reward constants
    │   ├── ledger.py      # Pure redemption arithmetic
    │   ├── progress.py    # Streak / weekly / category computations
    │   └── chat_hub.py    # Per-challenge fan-out + PG LISTEN/NOTIFY bridge
    ├── services/
    │   ├── membership_service.py  # join / leave / list memberships
    │   ├── completion_service.py  # once-per-day completion recording
    │   ├── ledger_service.py      # credit / redeem / balance
    │   ├── catalog_service.py     # create / search challenges
    │   ├── chat_service.py        # post / history
    │   ├── stats_service.py       # dashboard + statistics read models
    │   ├── profile_service.py     # display name + avatar
    │   └── participation.py       # Async coordinator over all of the above
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, hub, coordinator, JWT user
        └── routes/        # REST + WebSocket endpoints
"""

__version__ = "0.1.0"
