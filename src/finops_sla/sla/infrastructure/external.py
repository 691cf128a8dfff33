"""
SLA External Service Integrations
==================================

External services for SLA monitoring:
- Threshold policy YAML file with hot reload
- Escalation webhook notifications (best effort)
- APScheduler for the periodic evaluation tick and retention purge
"""

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from finops_sla.config import settings, EventKind
from finops_sla.shared.infrastructure.logging import get_logger
from finops_sla.sla.application import IEscalationNotifier, IPolicyProvider
from finops_sla.sla.domain import MonitoredTask, NotificationEvent, ThresholdPolicy

logger = get_logger(__name__)


class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for threshold policy file changes."""

    def __init__(self, manager: "PolicyConfigManager", policy_path: Path):
        self.manager = manager
        self.policy_path = policy_path.resolve()
        super().__init__()

    def _matches(self, path: str) -> bool:
        return Path(path).resolve() == self.policy_path

    def on_modified(self, event):
        if not event.is_directory and self._matches(event.src_path):
            logger.info("Policy file changed", extra={"path": event.src_path})
            self.manager.reload()

    def on_created(self, event):
        self.on_modified(event)

    def on_moved(self, event):
        # Editors that save atomically rename a temp file over the original
        if not event.is_directory and self._matches(event.dest_path):
            logger.info("Policy file replaced", extra={"path": event.dest_path})
            self.manager.reload()


class PolicyConfigManager(IPolicyProvider):
    """
    Thread-safe threshold policy holder with hot-reload support.

    The watchdog observer runs in its own thread; readers always see a
    complete policy object because reload swaps the reference whole.
    A file that fails to parse leaves the previous policy in place.
    """

    def __init__(self, policy: Optional[ThresholdPolicy] = None):
        self._policy: Optional[ThresholdPolicy] = policy
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None
        self._listeners = []

    def load(self, path: Path) -> ThresholdPolicy:
        """Initial policy load."""
        self._path = Path(path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        return policy

    @staticmethod
    def _load_from_file(path: Path) -> ThresholdPolicy:
        if not path.exists():
            logger.warning("Policy file not found, using defaults", extra={"path": str(path)})
            return ThresholdPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        # Accept either a bare mapping or one nested under "sla"
        if isinstance(data, dict) and isinstance(data.get("sla"), dict):
            data = data["sla"]

        return ThresholdPolicy(**data)

    def reload(self) -> bool:
        """Reload the policy from file."""
        if self._path is None:
            return False

        try:
            policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error(
                "Failed to reload policy, keeping previous one",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            previous, self._policy = self._policy, policy

        logger.info("Threshold policy reloaded", extra=policy.model_dump())
        for listener in self._listeners:
            listener(previous, policy)
        return True

    def on_change(self, listener: Callable[[Optional[ThresholdPolicy], ThresholdPolicy], None]) -> None:
        """Register a callback fired after a successful reload."""
        self._listeners.append(listener)

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Policy file missing, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                PolicyFileHandler(self, self._path),
                str(self._path.resolve().parent),
                recursive=False
            )
            self._observer.start()
            logger.info("Watching policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> ThresholdPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("Threshold policy not loaded")
            return self._policy


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for the escalation webhook.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failed deliveries, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._opened_at = None
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class EscalationNotifier(IEscalationNotifier):
    """
    Posts escalation events to an incoming webhook.

    Best effort: failures are logged and counted against the circuit
    breaker, never raised into the evaluation loop.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.escalation_webhook_url
        self.channel = channel or settings.escalation_channel
        self.timeout_seconds = timeout_seconds or settings.webhook_timeout_seconds
        self.max_retries = max_retries
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    def build_message(self, task: MonitoredTask, event: NotificationEvent) -> Dict[str, Any]:
        """Block Kit message for one escalation event."""
        if event.event_kind == EventKind.JUSTIFICATION_REQUIRED:
            header = "Justification Required"
        else:
            header = "SLA Escalation"

        start = task.scheduled_start.strftime("%Y-%m-%d %H:%M %Z")
        return {
            "channel": self.channel,
            "text": event.payload,
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": header}
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Task:*\n{task.name}"},
                        {"type": "mrkdwn", "text": f"*Scheduled start:*\n{start}"},
                        {"type": "mrkdwn", "text": f"*SLA:*\n{task.sla_minutes} min"},
                        {"type": "mrkdwn", "text": f"*Episode:*\n{event.episode}"},
                    ]
                },
                {
                    "type": "context",
                    "elements": [{"type": "mrkdwn", "text": event.payload}]
                }
            ]
        }

    async def notify(self, task: MonitoredTask, event: NotificationEvent) -> bool:
        """
        Send one event to the webhook.

        Returns:
            True if delivered, False otherwise
        """
        if not self.webhook_url:
            logger.debug("Escalation webhook not configured, skipping")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping escalation webhook",
                extra={"task_id": task.id, "event_kind": event.event_kind}
            )
            return False

        message = self.build_message(task, event)

        for attempt in range(self.max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self.webhook_url, json=message)
                if response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Escalation webhook delivered",
                        extra={"task_id": task.id, "event_kind": event.event_kind}
                    )
                    return True

                logger.warning(
                    "Escalation webhook returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Escalation webhook failed",
                    extra={"error": str(e), "attempt": attempt + 1, "task_id": task.id}
                )

            if attempt < self.max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class SLAScheduler:
    """
    Wrapper for APScheduler running the evaluation loop.

    The interval job never runs concurrently with itself
    (max_instances=1) and missed firings collapse into one (coalesce).
    """

    EVALUATION_JOB_ID = "sla_evaluation"
    PURGE_JOB_ID = "sla_notification_purge"

    def __init__(self, interval_seconds: int = 30, timezone: Optional[str] = None):
        self.interval_seconds = interval_seconds
        self.timezone = timezone or settings.timezone
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(
        self,
        tick: Callable[[], Awaitable[Any]],
        purge: Optional[Callable[[], Awaitable[Any]]] = None
    ) -> None:
        """Start the scheduler with the tick and, optionally, the daily purge."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self.timezone)
        self._scheduler.add_job(
            tick,
            "interval",
            seconds=self.interval_seconds,
            id=self.EVALUATION_JOB_ID,
            name="SLA Evaluation Tick",
            misfire_grace_time=self.interval_seconds,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        if purge is not None:
            self._scheduler.add_job(
                purge,
                "cron",
                hour=0,
                minute=5,
                id=self.PURGE_JOB_ID,
                name="SLA Notification Retention Purge",
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"interval_seconds": self.interval_seconds, "timezone": self.timezone}
        )

    def reschedule(self, interval_seconds: int) -> None:
        """Change the tick interval, e.g. after a policy reload."""
        if interval_seconds == self.interval_seconds:
            return
        self.interval_seconds = interval_seconds
        if self._running and self._scheduler:
            self._scheduler.reschedule_job(
                self.EVALUATION_JOB_ID, trigger="interval", seconds=interval_seconds
            )
            logger.info("SLA tick rescheduled", extra={"interval_seconds": interval_seconds})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
