"""
Escalation External Service Integrations
=========================================

External services for helpdesk escalation:
- YAML escalation policy with watchdog hot-reload
- Slack webhook notices on escalation
- APScheduler job for the periodic escalation sweep
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from facility_helpdesk.config import SupportLevel
from facility_helpdesk.core.exceptions import ConfigurationException
from facility_helpdesk.escalation.application.services import (
    IEscalationNotifier, IEscalationPolicyProvider
)
from facility_helpdesk.escalation.domain import EscalationPolicy, Ticket
from facility_helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


# ========== Escalation Policy ==========

class PolicyFileHandler(FileSystemEventHandler):
    """Watchdog event handler for escalation policy file changes."""

    def __init__(self, manager: "EscalationPolicyManager", config_path: Path):
        self.manager = manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Escalation policy file changed", extra={"path": event.src_path})
            self.manager.reload()


class EscalationPolicyManager(IEscalationPolicyProvider):
    """
    Thread-safe escalation policy holder with hot-reload support.

    A reload that fails validation keeps the previous policy in force.
    """

    def __init__(self):
        self._policy: Optional[EscalationPolicy] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationPolicy:
        """Initial load. An invalid file is a startup error."""
        self._path = path
        try:
            self._policy = self._load_from_file(path)
        except (yaml.YAMLError, ValidationError) as e:
            raise ConfigurationException(
                f"Invalid escalation policy file {path}: {e}"
            ) from e
        return self._policy

    def _load_from_file(self, path: Path) -> EscalationPolicy:
        if not path.exists():
            logger.warning(
                "Escalation policy file not found, using defaults",
                extra={"path": str(path)}
            )
            return EscalationPolicy()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return EscalationPolicy(**data)

    def reload(self) -> bool:
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.error(
                "Failed to reload escalation policy, keeping previous",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("Escalation policy reloaded", extra={"path": str(self._path)})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skipped when the file does not exist or inotify is unavailable.
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                "Escalation policy file missing, skipping file watch",
                extra={"path": str(self._path)}
            )
            return

        try:
            self._observer = Observer()
            handler = PolicyFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Watching escalation policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning(
                "File watching not available, using static policy",
                extra={"error": str(e)}
            )
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> EscalationPolicy:
        with self._lock:
            if self._policy is None:
                raise RuntimeError("Escalation policy not loaded")
            return self._policy


# ========== Slack ==========

class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60.0):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class EscalationMessage:
    """Content of one escalation notice."""
    ticket_id: str
    category: str
    sub_category: Optional[str]
    issue: Optional[str]
    priority: str
    status: str
    from_level: str
    to_level: str
    assignee: str
    reason: str
    next_escalation_time: Optional[str]

    @classmethod
    def from_ticket(cls, ticket: Ticket, from_level: SupportLevel, reason: str) -> "EscalationMessage":
        entry = ticket.current_entry
        return cls(
            ticket_id=ticket.id,
            category=ticket.category,
            sub_category=ticket.sub_category,
            issue=ticket.issue,
            priority=ticket.effective_priority,
            status=ticket.status.value,
            from_level=from_level.value,
            to_level=ticket.current_level.value,
            assignee=entry.assignee if entry else "",
            reason=reason,
            next_escalation_time=ticket.next_escalation_time.isoformat()
            if ticket.next_escalation_time else None,
        )


class SlackEscalationNotifier(IEscalationNotifier):
    """
    Slack webhook client with circuit breaker and retry logic.

    Notices are best effort: every failure is logged and reported as
    False so an escalation is never rolled back by a Slack outage.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        channel: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, data: EscalationMessage) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        classification = " / ".join(
            part for part in (data.category, data.sub_category, data.issue) if part
        )
        blocks = [
            {
                "type": "header",
                "text": {
                    "type": "plain_text",
                    "text": f"Ticket escalated {data.from_level} -> {data.to_level}",
                }
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Ticket:*\n{data.ticket_id}"},
                    {"type": "mrkdwn", "text": f"*Priority:*\n{data.priority}"},
                    {"type": "mrkdwn", "text": f"*Classification:*\n{classification}"},
                    {"type": "mrkdwn", "text": f"*Status:*\n{data.status}"},
                    {"type": "mrkdwn", "text": f"*Assignee:*\n{data.assignee}"},
                    {"type": "mrkdwn", "text": f"*Reason:*\n{data.reason}"},
                ]
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Next escalation: {data.next_escalation_time or 'none'}"
                    }
                ]
            }
        ]
        return {"channel": self._channel, "blocks": blocks}

    async def notify_escalation(
        self,
        ticket: Ticket,
        from_level: SupportLevel,
        reason: str
    ) -> bool:
        if not self._webhook_url:
            logger.debug("Slack webhook URL not configured, skipping notification")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping Slack notification",
                extra={"ticket_id": ticket.id}
            )
            return False

        data = EscalationMessage.from_ticket(ticket, from_level, reason)
        message = self._build_message(data)

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Slack notification sent",
                        extra={"ticket_id": data.ticket_id, "to_level": data.to_level}
                    )
                    return True

                logger.warning(
                    "Slack webhook returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Slack notification failed",
                    extra={"error": str(e), "attempt": attempt + 1, "ticket_id": data.ticket_id}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# ========== Scheduler ==========

class EscalationScheduler:
    """
    Wrapper for APScheduler running the periodic escalation sweep.

    Manages the lifecycle of the scheduler and its single job.
    """

    def __init__(self, interval_seconds: int = 300):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def start(self, job_func: Callable[[], Awaitable[None]]) -> None:
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            job_func,
            "interval",
            seconds=self.interval_seconds,
            id="escalation_sweep",
            name="Escalation Sweep Job",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=True)

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running
