from __future__ import annotations

import threading
from typing import Optional

from sessionauth.config import get_settings, reset_settings_cache
from sessionauth.logging import get_logger
from sessionauth.service.auth import AuthService
from sessionauth.service.clock import SystemClock
from sessionauth.service.tokens import TokenCodec
from sessionauth.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds the singleton settings, store and auth service for one process."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            persist_state=self.settings.persist_state,
            shared_fs_root=self.settings.shared_fs_root,
        )
        try:
            self.store = MemoryStore(
                fs_root=self.settings.shared_fs_root
                if self.settings.persist_state
                else None
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        self.clock = SystemClock()
        self.codec = TokenCodec(self.clock)
        self.auth = AuthService.from_store(
            self.store, self.settings, codec=self.codec, clock=self.clock
        )
        logger.info("runtime_init_completed")


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    global runtime
    if runtime is None:
        with _runtime_lock:
            if runtime is None:
                runtime = Runtime()
    return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs."""

    global runtime

    with _runtime_lock:
        runtime = None
        reset_settings_cache()
