"""
Scoped repair mode on a subscriber.
"""

import logging

logger = logging.getLogger(__name__)


class RepairModeGuard:
    """
    Context manager holding a subscriber in repair mode.

    Opens a session on the client (repair mode is per session), enables
    repair mode, and on every exit path disables it and closes the session.
    Calls made through the client inside the block share that session.

        with RepairModeGuard(client):
            client.create_subscription(...)
    """

    def __init__(self, client):
        self.client = client
        self._session = None
        self.enabled = False

    def __enter__(self):
        self._session = self.client.session()
        self._session.__enter__()
        try:
            self.client.set_repair_mode(True)
        except BaseException:
            self._close()
            raise

        self.enabled = True
        logger.debug(f"Repair mode enabled on {self.client.cluster.name}")
        return self.client

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.client.set_repair_mode(False)
            logger.debug(f"Repair mode disabled on {self.client.cluster.name}")
        except Exception as e:
            # closing the session ends repair mode anyway
            logger.warning(f"Failed to disable repair mode on {self.client.cluster.name}: {e}")
        finally:
            self.enabled = False
            self._close()
        return False

    def _close(self):
        session, self._session = self._session, None
        if session is not None:
            session.__exit__(None, None, None)
