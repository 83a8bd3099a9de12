"""
Celery Tasks
Background reconciliation of account mirrors with their ledgers.
"""

import asyncio
import logging
import time
from datetime import datetime

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from milkcafe.celery_worker import celery_app
from milkcafe.core.config import get_settings

logger = logging.getLogger(__name__)


async def _reconcile(loyalty_id: str) -> bool:
    """Run the mirror rebuild with a worker-owned engine."""
    from milkcafe.services.ledger import sync_account_mirror

    # Each task runs in a fresh event loop; pooled connections can't be shared
    engine = create_async_engine(get_settings().database_url, poolclass=NullPool)
    session_maker = async_sessionmaker(bind=engine, expire_on_commit=False)
    try:
        async with session_maker() as session:
            return await sync_account_mirror(session, loyalty_id)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    max_retries=5,
    default_retry_delay=5,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def reconcile_account_mirror(self, loyalty_id: str) -> dict:
    """
    Rebuild an account's cached balance and points history from its ledger.

    Safe to run any number of times; retried with backoff on failure.

    Args:
        loyalty_id: Loyalty id whose account should be refreshed

    Returns:
        dict: Result of the reconciliation
    """
    task_id = self.request.id
    start_time = time.time()

    synced = asyncio.run(_reconcile(loyalty_id))

    elapsed = round(time.time() - start_time, 3)
    if synced:
        logger.info(f"Task {task_id}: account for {loyalty_id} reconciled in {elapsed}s")
    else:
        logger.info(f"Task {task_id}: no account holds {loyalty_id}, nothing to reconcile")

    return {
        'loyalty_id': loyalty_id,
        'synced': synced,
        'task_id': task_id,
        'processing_time_seconds': elapsed,
        'timestamp': datetime.now().isoformat(),
    }
