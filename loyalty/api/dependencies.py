"""
FastAPI Dependencies - Service construction per request.

NO DICTIONARIES - All dependencies return typed objects.

Each request gets one write session; the services built on it share it so a
workflow operation sees one unit of work. Tests override get_write_db,
get_activity_recorder and get_clock.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.session import get_session_factory, get_write_db
from loyalty.services.activity import ActivityRecorder, DatabaseActivityRecorder
from loyalty.services.catalog import RewardCatalog
from loyalty.services.clock import Clock, SystemClock
from loyalty.services.ledger import AccountLedger
from loyalty.services.redemption import RedemptionWorkflow
from loyalty.services.transactions import TransactionLog
from loyalty.services.vouchers import VoucherStore


def get_clock() -> Clock:
    """Wall clock for timestamps."""
    return SystemClock()


def get_activity_recorder(clock: Clock = Depends(get_clock)) -> ActivityRecorder:
    """Activity recorder writing through its own sessions, never the request's."""
    return DatabaseActivityRecorder(get_session_factory(), clock)


def get_ledger(
    db: AsyncSession = Depends(get_write_db),
    clock: Clock = Depends(get_clock),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
) -> AccountLedger:
    return AccountLedger(db, clock, recorder)


def get_redemption_workflow(
    db: AsyncSession = Depends(get_write_db),
    clock: Clock = Depends(get_clock),
    recorder: ActivityRecorder = Depends(get_activity_recorder),
) -> RedemptionWorkflow:
    return RedemptionWorkflow(db, clock, recorder)


def get_catalog(db: AsyncSession = Depends(get_write_db)) -> RewardCatalog:
    return RewardCatalog(db)


def get_voucher_store(
    db: AsyncSession = Depends(get_write_db),
    clock: Clock = Depends(get_clock),
) -> VoucherStore:
    return VoucherStore(db, clock)


def get_transaction_log(
    db: AsyncSession = Depends(get_write_db),
    clock: Clock = Depends(get_clock),
) -> TransactionLog:
    return TransactionLog(db, clock)
