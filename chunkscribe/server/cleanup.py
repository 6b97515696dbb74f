"""Removal of stored parts once a session ends."""

import logging

from ..storage.part_storage import PartStorage

logger = logging.getLogger(__name__)


class CleanupManager:
    """Purges the stored parts of finished or cancelled sessions.

    Purging never raises: a part left behind is logged, not surfaced to the
    caller whose finalize or cancel already succeeded.
    """

    def __init__(self, storage: PartStorage):
        self.storage = storage
        self.purged_sessions = 0
        self.failed_purges = 0

    def purge(self, owner_id: str, session_id: str, reason: str = "") -> bool:
        try:
            self.storage.delete_session(owner_id, session_id)
        except Exception as e:
            self.failed_purges += 1
            logger.error(f"Failed to purge parts of {owner_id}/{session_id} ({reason}): {e}", exc_info=True)
            return False
        self.purged_sessions += 1
        logger.info(f"Purged parts of {owner_id}/{session_id} ({reason})")
        return True
