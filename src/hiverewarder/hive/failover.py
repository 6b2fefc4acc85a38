"""
hiverewarder/hive/failover.py

Ordered-node failover for calls against Hive API nodes.

The node list is passed in explicitly and the index that answered is
returned to the caller; there is no process-wide "current node".
"""

import logging
import time
from typing import Any, Callable, List, Optional, Tuple

import requests

from ..errors import HiveClientError

logger = logging.getLogger("hiverewarder.hive.failover")


# Errors worth retrying on another node
TRANSIENT_ERRORS = (HiveClientError, requests.RequestException, ValueError)


def with_failover(
    nodes: List[str],
    operation: Callable[[str], Any],
    attempts: Optional[int] = None,
    delay: float = 0.0,
    start: int = 0,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[Any, int]:
    """
    Run ``operation(node)`` against nodes in order until one succeeds.

    Args:
        nodes: Ordered node URLs
        operation: Callable taking a node URL
        attempts: Total attempts (defaults to one per node)
        delay: Seconds to wait between attempts
        start: Index of the first node to try
        sleep: Sleep function (injectable for tests)

    Returns:
        (result, node_index) of the first successful attempt

    Raises:
        HiveClientError: If every attempt failed
    """
    if not nodes:
        raise HiveClientError("No Hive API nodes configured")

    if attempts is None:
        attempts = len(nodes)

    last_error: Optional[Exception] = None
    for attempt in range(attempts):
        idx = (start + attempt) % len(nodes)
        node = nodes[idx]
        try:
            return operation(node), idx
        except TRANSIENT_ERRORS as e:
            last_error = e
            logger.warning(f"Attempt {attempt + 1}/{attempts} failed on {node}: {e}")
            if attempt < attempts - 1:
                logger.info(f"Switched to Hive node: {nodes[(idx + 1) % len(nodes)]}")
                if delay > 0:
                    sleep(delay)

    raise HiveClientError(f"All {attempts} attempts failed: {last_error}")
