"""
Session setup and sudo credential keep-alive.
"""

import logging
import subprocess
import threading
from typing import Optional

from ..utils.os_detection import get_invoking_user, get_user_home, is_admin
from .models import SessionContext

logger = logging.getLogger(__name__)

SUDO_TIMEOUT = 10


def build_session() -> SessionContext:
    """Capture who is running the tool and with which privileges."""
    user = get_invoking_user()
    return SessionContext(
        started_elevated=is_admin(),
        invoking_user=user,
        home_dir=get_user_home(user),
    )


class CredentialKeepAlive:
    """
    Refreshes the cached sudo credential in the background.

    A long run would otherwise outlive sudo's timestamp timeout and the
    ``sudo -n`` commands issued later in the run would start failing.
    Does nothing when the process already runs as root.

    Usage::

        with CredentialKeepAlive(session, interval=60):
            tool.apply(...)
    """

    def __init__(self, session: SessionContext, interval: int = 60):
        self.session = session
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.session.started_elevated or self.running:
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop, name="sudo-keepalive", daemon=True
        )
        self._thread.start()
        self.session.keepalive_id = self._thread.native_id
        logger.debug("sudo keep-alive started (thread %s)", self.session.keepalive_id)

    def stop(self) -> None:
        if self._thread is None:
            return

        self._stop.set()
        self._thread.join(timeout=SUDO_TIMEOUT + 5)
        if self._thread.is_alive():
            logger.warning("sudo keep-alive thread did not exit; leaving it to finish")
            return
        self._thread = None
        self.session.keepalive_id = None
        logger.debug("sudo keep-alive stopped")

    def _refresh_loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                result = subprocess.run(
                    ["sudo", "-n", "-v"], capture_output=True, timeout=SUDO_TIMEOUT
                )
            except (subprocess.TimeoutExpired, OSError) as e:
                logger.warning("sudo keep-alive failed: %s", e)
                continue
            if result.returncode != 0:
                logger.warning("sudo credential could not be refreshed; "
                               "privileged commands may fail")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False
