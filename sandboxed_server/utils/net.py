"""TCP readiness probe."""

import asyncio
import time

import structlog

logger = structlog.get_logger(__name__)


async def wait_for_service(
    host: str, port: int, timeout: float, interval: float = 0.1
) -> bool:
    """Wait until ``host:port`` accepts TCP connections.

    Args:
        host: Address to connect to
        port: Port to connect to
        timeout: Maximum time to wait in seconds
        interval: Pause between connection attempts

    Returns:
        True once a connection succeeds, False if the timeout elapses
    """
    deadline = time.monotonic() + timeout
    attempts = 0

    while True:
        attempts += 1
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, int(port)), timeout=remaining
            )
        except (OSError, asyncio.TimeoutError):
            await asyncio.sleep(min(interval, max(deadline - time.monotonic(), 0)))
            continue

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        logger.debug("Service accepting connections", host=host, port=port, attempts=attempts)
        return True

    logger.warning("Service did not come up", host=host, port=port, timeout=timeout)
    return False
