"""Systemd watchdog heartbeat for the radio service.

Sends WATCHDOG=1 to the systemd notify socket at regular intervals.
Silently no-ops when NOTIFY_SOCKET is unset (macOS / dev mode).

Usage:
    from beoradio.lib.watchdog import watchdog_loop
    asyncio.create_task(watchdog_loop())
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send a notification message to the systemd notify socket.

    Returns True when a socket was configured and the message was sent.
    """
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    except OSError as e:
        logger.warning("sd_notify(%s) failed: %s", msg.split("\n")[0], e)
        return False
    finally:
        sock.close()
    return True


async def watchdog_loop(interval: int = 20, status=None):
    """Send WATCHDOG=1 every *interval* seconds.  Call as asyncio.create_task().

    Also sends READY=1 on first invocation so systemd knows the service
    has finished startup (requires Type=notify in the unit file).  When
    *status* is given it is called each beat and its result is published
    as the unit's STATUS= line.
    """
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ds)", interval)
    while True:
        msg = "WATCHDOG=1"
        if status is not None:
            msg += f"\nSTATUS={status()}"
        sd_notify(msg)
        await asyncio.sleep(interval)
