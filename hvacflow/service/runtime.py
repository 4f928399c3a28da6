from __future__ import annotations

import threading

from hvacflow.config import get_settings, reset_settings_cache
from hvacflow.logging import get_logger
from hvacflow.service.actions import NodeActionDispatcher
from hvacflow.service.ai import AIService
from hvacflow.service.email import EmailService
from hvacflow.service.links import LinkService
from hvacflow.service.tasks import TaskTracker
from hvacflow.service.workflow import WorkflowService
from hvacflow.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info("runtime_init_started", test_mode=self.settings.test_mode)

        self.store = MemoryStore()
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.email_from_address,
            from_name=self.settings.email_from_name,
        )
        self.tasks = TaskTracker(self.store)
        self.links = LinkService(self.store, self.settings)
        self.ai = AIService(
            base_url=self.settings.ai_service_url,
            api_key=self.settings.ai_service_api_key,
            timeout=self.settings.ai_timeout_seconds,
        )
        self.dispatcher = NodeActionDispatcher(
            store=self.store,
            email=self.email,
            tasks=self.tasks,
            links=self.links,
            ai=self.ai,
        )
        self.workflows = WorkflowService(
            self.store,
            self.dispatcher,
            max_run_steps=self.settings.max_run_steps,
        )
        logger.info(
            "runtime_init_completed",
            email_configured=self.email.is_configured,
            ai_configured=self.ai.is_configured,
        )


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking pattern for efficiency:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
