"""
YieldVault — Rewards Accrual & Distribution Engine
====================================================
Compounds yield on verified deposits on an hourly schedule, splits periodic
revenue pools across snapshot holders, and settles the resulting reward
records from *pending* to *withdrawn* exactly once.

Package layout::

    yieldvault/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Chain registry defaults + address families
    ├── errors.py          # Exception hierarchy shared by services and API
    ├── scheduler.py       # APScheduler wiring (hourly accrual, monthly snapshot)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default chain registry seeder
    ├── engine/
    │   ├── accrual.py     # Pure compound-interest calculator
    │   ├── addresses.py   # Per-family payout address validation
    │   └── distribution.py # Pro-rata pool allocation
    ├── services/
    │   ├── ledger_service.py       # Contribution register/verify/reject
    │   ├── accrual_service.py      # Scheduled accrual batch
    │   ├── lease_service.py        # Durable scheduler lease
    │   ├── claim_service.py        # pending → withdrawn transitions
    │   ├── distribution_service.py # Snapshots + pool distribution
    │   ├── admin_service.py        # Audit-logged chain registry mutations
    │   ├── analytics_service.py    # Reporting aggregates
    │   ├── payment_executor.py     # httpx client for the payout executor
    │   └── holdings_source.py      # httpx client for snapshot holdings
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + engine/config dependencies
        └── routes/        # Admin, rewards and public REST endpoints
"""

__version__ = "0.1.0"
