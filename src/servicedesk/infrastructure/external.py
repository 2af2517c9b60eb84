"""
Service Desk External Integrations
==================================

Process-level collaborators of the service desk:
- YAML escalation policy with watchdog hot reload
- APScheduler wrapper driving the escalation sweep
- Local-disk attachment storage
"""

import asyncio
import re
import threading
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional
from uuid import uuid4

import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from src.config import settings
from src.core import (
    Clock,
    ConfigurationException,
    DocumentStorageException,
    ValidationException,
    utc_now,
)
from src.servicedesk.application import IDocumentStorage, IEscalationPolicyProvider, SweepResult
from src.servicedesk.domain import Attachment, AttachmentUpload, EscalationPolicy
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def default_policy() -> EscalationPolicy:
    """Escalation policy built from settings alone."""
    try:
        return EscalationPolicy(
            timezone=settings.business_timezone,
            work_start_hour=settings.work_start_hour,
            work_end_hour=settings.work_end_hour,
            default_budget_minutes=settings.sla_minutes_per_level,
        )
    except ValidationError as e:
        raise ConfigurationException(
            "Invalid escalation settings", {"errors": e.errors(include_url=False)}
        ) from e


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for escalation policy file changes."""

    def __init__(self, policy_manager: "EscalationPolicyManager", config_path: Path):
        self.policy_manager = policy_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Escalation policy file changed", extra={"path": event.src_path})
            self.policy_manager.reload()


class EscalationPolicyManager(IEscalationPolicyProvider):
    """
    Thread-safe escalation policy holder with hot-reload support.

    Values in the YAML file override the settings-derived defaults. A
    reload that fails validation keeps the previous policy.
    """

    def __init__(self, defaults: Optional[EscalationPolicy] = None):
        self._defaults = defaults or default_policy()
        self._policy: EscalationPolicy = self._defaults
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> EscalationPolicy:
        """Initial policy load. Raises ConfigurationException on an invalid file."""
        self._path = Path(path)
        policy = self._load_from_file(self._path)
        with self._lock:
            self._policy = policy
        logger.info(
            "Escalation policy loaded",
            extra={
                "timezone": policy.timezone,
                "window": f"{policy.work_start_hour}-{policy.work_end_hour}",
                "default_budget_minutes": policy.default_budget_minutes,
            }
        )
        return policy

    def _load_from_file(self, path: Path) -> EscalationPolicy:
        if not path.exists():
            logger.warning("Escalation policy file not found, using settings", extra={"path": str(path)})
            return self._defaults

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationException(f"Cannot read escalation policy file {path}", {"error": str(e)}) from e

        if not isinstance(data, dict):
            raise ConfigurationException(f"Escalation policy file {path} must contain a mapping")

        merged = self._defaults.model_dump()
        merged.update(data)
        try:
            return EscalationPolicy(**merged)
        except ValidationError as e:
            raise ConfigurationException(
                f"Invalid escalation policy in {path}", {"errors": e.errors(include_url=False)}
            ) from e

    def reload(self) -> bool:
        """Reload policy from file."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except ConfigurationException as e:
            logger.error("Failed to reload escalation policy", extra={"error": e.message})
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("Escalation policy reloaded successfully")
        return True

    def start_watching(self) -> None:
        """Start watching the policy file, when there is one."""
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Escalation policy file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent.resolve()), recursive=False)
            self._observer.start()
            logger.info("Started watching escalation policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> EscalationPolicy:
        with self._lock:
            return self._policy


SweepRunner = Callable[..., Awaitable[SweepResult]]


class EscalationScheduler:
    """
    Process-owned trigger for the escalation sweep.

    tick() is the unit of work: it skips when a previous tick is still
    running or when the clock is outside the working window, otherwise it
    runs one sweep. start() hands tick() to APScheduler on an interval.
    """

    def __init__(
        self,
        sweep: SweepRunner,
        policy_provider: IEscalationPolicyProvider,
        interval_minutes: int = 5,
        clock: Clock = utc_now
    ):
        self._sweep = sweep
        self._policy_provider = policy_provider
        self.interval_minutes = interval_minutes
        self._clock = clock
        self._lock = asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    async def tick(self) -> Optional[SweepResult]:
        """Run one sweep if allowed. Returns None when the tick was skipped."""
        if self._lock.locked():
            logger.warning("Previous escalation sweep still running, skipping tick")
            return None

        async with self._lock:
            now = self._clock()
            working_hours = self._policy_provider.get_policy().working_hours()
            if not working_hours.is_working_instant(now):
                logger.debug("Outside working hours, skipping escalation sweep")
                return None

            try:
                return await self._sweep(now)
            except Exception:
                logger.exception("Escalation sweep failed")
                return None

    async def start(self) -> None:
        """Start the scheduler."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self._policy_provider.get_policy().tz)
        self._scheduler.add_job(
            self.tick,
            "interval",
            minutes=self.interval_minutes,
            id="ticket_escalation",
            name="Ticket Escalation Sweep",
            misfire_grace_time=60,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        self._running = True

        logger.info("Escalation scheduler started", extra={"interval_minutes": self.interval_minutes})

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Escalation scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._running


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(original_name: str) -> str:
    """Basename of an uploaded file with anything unusual replaced."""
    base = Path(original_name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "attachment"


class LocalDocumentStorage(IDocumentStorage):
    """
    Stores attachments on local disk under <root>/<entity type>/<entity id>/.
    """

    def __init__(
        self,
        root: Optional[Path] = None,
        base_url: Optional[str] = None,
        max_bytes: Optional[int] = None,
        allowed_types: Optional[Iterable[str]] = None
    ):
        self._root = Path(root or settings.upload_dir)
        self._base_url = (base_url if base_url is not None else settings.upload_base_url).rstrip("/")
        self._max_bytes = max_bytes or settings.max_upload_bytes
        self._allowed_types = frozenset(allowed_types or settings.allowed_upload_types)

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def validate(self, upload: AttachmentUpload) -> None:
        if upload.content_type not in self._allowed_types:
            raise ValidationException(
                "Unsupported attachment type",
                {"content_type": upload.content_type, "allowed": sorted(self._allowed_types)}
            )
        if upload.size == 0:
            raise ValidationException("Attachment is empty")
        if upload.size > self._max_bytes:
            raise ValidationException(
                "Attachment is too large",
                {"size": upload.size, "max_bytes": self._max_bytes}
            )

    async def store(
        self,
        upload: AttachmentUpload,
        entity_type: str,
        entity_id: str,
        uploaded_by: str
    ) -> Attachment:
        self.validate(upload)

        file_name = f"{uuid4().hex}_{safe_file_name(upload.original_name)}"
        target_dir = self._root / entity_type / entity_id
        target = target_dir / file_name

        def _write() -> None:
            target_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(upload.content)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise DocumentStorageException(
                "Failed to store attachment", {"path": str(target), "error": str(e)}
            ) from e

        logger.info(
            "Attachment stored",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "uploaded_by": uploaded_by,
                "size": upload.size,
            }
        )
        return Attachment(
            url=f"{self._base_url}/{entity_type}/{entity_id}/{file_name}",
            file_name=file_name,
            original_name=upload.original_name,
        )

    async def discard(self, attachment: Attachment, entity_type: str, entity_id: str) -> None:
        target = self._root / entity_type / entity_id / safe_file_name(attachment.file_name)
        try:
            await asyncio.to_thread(target.unlink, missing_ok=True)
        except OSError as e:
            logger.error("Failed to remove orphaned attachment", extra={"path": str(target), "error": str(e)})
            return
        logger.info("Orphaned attachment removed", extra={"entity_type": entity_type, "entity_id": entity_id})
