"""
GemBot — Community Engagement Bot with a GEMS Currency Ledger
==============================================================
Verifies members, announces the storefront, and runs GEMS: an internal
currency members earn for taking part and tip to each other.  The ledger is
the heart of the project — balances with strict invariants, an append-only
transaction log, compensated transfers, and daily anti-abuse caps.

Package layout::

    gembot/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Presentation constants (currency name, badges)
    ├── errors.py          # Ledger error taxonomy
    ├── database/
    │   ├── engine.py      # Database handle, session helper, async bridge
    │   ├── models.py      # Balances, transactions, settings, admin log
    │   └── seed.py        # Default GEMS settings
    ├── engine/
    │   ├── cache.py       # SettingsCache — TTL cache for settings
    │   └── limits.py      # LimitPolicy — daily earn & transfer caps
    ├── services/
    │   ├── settings_service.py     # SettingsStore (typed, cached, audited)
    │   ├── balance_store.py        # Guarded balance mutations
    │   ├── transaction_ledger.py   # Append-only log, history, aggregates
    │   ├── leaderboard_service.py  # Rankings and percentiles
    │   ├── ledger_service.py       # credit / debit / transfer orchestration
    │   ├── retention_service.py    # Transaction retention cleanup
    │   └── reconciliation_service.py  # Invariant & stranded-transfer audit
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       ├── gems.py    # /gems balance|leaderboard|history|rank, /tip
    │       └── admin.py   # /gems-admin add|remove|stats|setting
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / ledger / JWT dependencies
        └── routes/        # Public + admin REST endpoints
"""

__version__ = "0.1.0"
