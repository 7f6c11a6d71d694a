"""Active store selection between the hosted store and the local fallback."""

import logging
from pathlib import Path
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from database.local_store import LocalBillingStore, LocalStore
from database.session import init_db
from database.store import DatabaseBillingStore
from tracker.base import BillingStore

logger = logging.getLogger(__name__)


def build_stores(
    database_url: str,
    offline_mode: bool = False,
    local_store_path: Optional[Union[str, Path]] = None,
) -> tuple[BillingStore, LocalBillingStore]:
    """
    Build the active store and the local fallback store.

    The hosted store is active unless offline mode is on or the database
    cannot be reached, in which case the local store is used for everything.

    Returns:
        (active_store, fallback_store)
    """
    local = LocalBillingStore(LocalStore(local_store_path))
    local.local.seed_defaults()

    if offline_mode:
        logger.info("Offline mode: using local store")
        return local, local

    try:
        init_db(database_url)
    except SQLAlchemyError as e:
        logger.warning(f"Hosted store initialisation failed, using local store: {e}")
        return local, local

    hosted = DatabaseBillingStore()
    if not hosted.ping():
        logger.warning("Hosted store unreachable, using local store")
        return local, local

    logger.info("Using hosted store")
    return hosted, local
