"""
Readiness probe: wait for a cluster's primary to accept connections.
"""

import logging
import time
from typing import Callable, Optional

from spock_mesh.exceptions import ReadinessTimeout, SpockError

logger = logging.getLogger(__name__)


class ReadinessProbe:
    """
    Polls a trivial query on a fixed interval until it succeeds.

    Without a timeout the wait is unbounded.
    """

    def __init__(
        self,
        interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self._sleep = sleep
        self._clock = clock

    def await_ready(self, client, timeout: Optional[float] = None) -> int:
        """
        Block until the cluster behind client answers a ping.

        Args:
            client: SpockClient of the cluster
            timeout: Seconds to wait before giving up, None to wait forever

        Returns:
            Number of attempts made

        Raises:
            ReadinessTimeout: If timeout elapses first
        """
        name = client.cluster.name
        start = self._clock()
        attempts = 0

        logger.info(f"Waiting for {name} primary to accept connections...")

        while True:
            attempts += 1
            try:
                client.ping()
                logger.info(f"{name} primary ready after {attempts} attempt(s)")
                return attempts
            except SpockError as e:
                logger.debug(f"{name} not ready (attempt {attempts}): {e}")

            if timeout is not None and self._clock() - start + self.interval > timeout:
                raise ReadinessTimeout(name, timeout)

            self._sleep(self.interval)
