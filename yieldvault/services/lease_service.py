"""
yieldvault.services.lease_service — Durable Scheduler Lease
============================================================

At most one accrual batch may run at a time, across processes and restarts.
A lease is a row in ``scheduler_leases`` keyed by name.  It is acquired when
the row is absent, expired, or already ours; it expires on its own so a
crashed holder cannot block the scheduler forever.
"""

from __future__ import annotations

import logging
import os
import socket
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import Engine, delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from yieldvault.database.engine import utcnow
from yieldvault.database.models import SchedulerLease

logger = logging.getLogger(__name__)


def default_holder_id() -> str:
    """``host:pid:random`` — unique per call, readable in the table."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


def acquire_lease(
    engine: Engine,
    name: str,
    holder: str,
    ttl_seconds: int,
    *,
    now: datetime | None = None,
) -> bool:
    """Try to take lease *name* for *holder*.  Returns ``True`` on success."""
    now = now or utcnow()
    expires_at = now + timedelta(seconds=ttl_seconds)

    # Take over an expired lease (or renew our own).
    with Session(engine) as session:
        result = session.execute(
            update(SchedulerLease)
            .where(
                SchedulerLease.name == name,
                or_(SchedulerLease.expires_at < now, SchedulerLease.holder == holder),
            )
            .values(holder=holder, acquired_at=now, expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount == 1:
            logger.debug("Lease %s taken over by %s", name, holder)
            return True

    # No row yet: first writer wins on the primary key.
    with Session(engine) as session:
        session.add(SchedulerLease(
            name=name, holder=holder, acquired_at=now, expires_at=expires_at,
        ))
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            logger.info("Lease %s is held by another scheduler", name)
            return False
    logger.debug("Lease %s created for %s", name, holder)
    return True


def release_lease(engine: Engine, name: str, holder: str) -> bool:
    """Drop lease *name* if *holder* still owns it."""
    with Session(engine) as session:
        result = session.execute(
            delete(SchedulerLease)
            .where(SchedulerLease.name == name, SchedulerLease.holder == holder)
            .execution_options(synchronize_session=False)
        )
        session.commit()
        return result.rowcount == 1


@contextmanager
def held_lease(
    engine: Engine,
    name: str,
    ttl_seconds: int,
    *,
    holder: str | None = None,
    now: datetime | None = None,
) -> Iterator[bool]:
    """Yield whether the lease was acquired; release it on exit if it was."""
    holder = holder or default_holder_id()
    acquired = acquire_lease(engine, name, holder, ttl_seconds, now=now)
    try:
        yield acquired
    finally:
        if acquired:
            release_lease(engine, name, holder)
