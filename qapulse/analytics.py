"""
QA Pulse - Analytics Reader
=============================
Aggregate pass/fail/device counts computed fresh from the store.

Snapshots are never cached: each call runs one aggregate SELECT.
An empty tests table yields zeros, not an error.
"""

import logging

from pydantic import BaseModel
from sqlalchemy import case, func, select, true
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from qapulse.errors import StoreError
from qapulse.store import devices, tests

logger = logging.getLogger(__name__)


class Analytics(BaseModel):
    """One analytics snapshot, also the wire payload of `analytics` envelopes."""
    total_tests: int = 0
    passed: int = 0
    failed: int = 0
    devices_online: int = 0


def _count_status(status: str):
    return func.coalesce(func.sum(case((tests.c.status == status, 1), else_=0)), 0)


class AnalyticsReader:
    """
    Read-only aggregate queries over the tests and devices tables.

    Attributes:
        engine: Async engine passed in at construction.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def global_snapshot(self) -> Analytics:
        """Counts over every test record."""
        return await self._snapshot(None)

    async def user_snapshot(self, user_id: int) -> Analytics:
        """Counts over one user's test records. Devices are not per-user."""
        return await self._snapshot(user_id)

    async def _snapshot(self, user_id: int | None) -> Analytics:
        devices_online = (
            select(func.count())
            .select_from(devices)
            .where(devices.c.online.is_(true()))
            .scalar_subquery()
        )
        stmt = select(
            func.count().label("total_tests"),
            _count_status("passed").label("passed"),
            _count_status("failed").label("failed"),
            devices_online.label("devices_online"),
        ).select_from(tests)
        if user_id is not None:
            stmt = stmt.where(tests.c.user_id == user_id)

        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).one()
        except SQLAlchemyError as e:
            logger.exception("Analytics query failed (user=%s)", user_id)
            raise StoreError("failed to load analytics") from e

        # MySQL returns SUM() as DECIMAL
        return Analytics(
            total_tests=int(row.total_tests or 0),
            passed=int(row.passed or 0),
            failed=int(row.failed or 0),
            devices_online=int(row.devices_online or 0),
        )
