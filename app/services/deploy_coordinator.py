"""Deploy Coordinator — single-flight redeploys per project.

At most one deploy may run against a project directory at a time: two
overlapping ``git pull`` runs or compose restarts on the same tree are
unsafe. The coordinator keeps an explicit claim registry keyed by project;
a trigger that finds the project already claimed returns ``skipped`` without
touching the filesystem. Claims are taken and released without awaiting in
between, so on a single event loop the check-and-claim is atomic.

One coordinator instance lives for the lifetime of the application (created
in the FastAPI lifespan) and owns the background tasks it dispatches.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.metrics import DEPLOY_DURATION, DEPLOYMENTS_TOTAL
from app.models.deploy_log import DeployLog, DeployRunState, DeployTrigger
from app.services.container_runtime import ContainerRuntime
from app.services.git_sync_service import GitSyncService, scrub_credentials
from app.services.notifications import DeployNotification, NotificationSink
from app.services.project_service import DeployTarget

logger = logging.getLogger(__name__)

_NOTIFY_EVENTS = {
    DeployRunState.succeeded: "success",
    DeployRunState.failed: "failure",
    DeployRunState.skipped: "skip",
}


@dataclass
class DeployRun:
    project_key: str
    trigger: DeployTrigger
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: DeployRunState = DeployRunState.pending
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    commit_hash: str | None = None
    error: str | None = None


@dataclass
class DeployResult:
    state: DeployRunState
    has_changes: bool = False
    error: str | None = None
    run: DeployRun | None = None

    @property
    def success(self) -> bool:
        return self.state == DeployRunState.succeeded

    @property
    def skipped(self) -> bool:
        return self.state == DeployRunState.skipped


class DeployCoordinator:
    def __init__(
        self,
        git: GitSyncService,
        runtime: ContainerRuntime,
        notifier: NotificationSink,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.git = git
        self.runtime = runtime
        self.notifier = notifier
        self.session_factory = session_factory
        self._claims: dict[str, DeployRun] = {}
        self._tasks: set[asyncio.Task] = set()

    # -- claim registry -----------------------------------------------------

    def _claim(self, target: DeployTarget, trigger: DeployTrigger, commit_hash: str | None) -> DeployRun | None:
        if target.key in self._claims:
            return None
        run = DeployRun(project_key=target.key, trigger=trigger, commit_hash=commit_hash)
        self._claims[target.key] = run
        return run

    def _release(self, run: DeployRun) -> None:
        held = self._claims.get(run.project_key)
        if held is not None and held.run_id == run.run_id:
            del self._claims[run.project_key]

    def is_deploying(self, project_key: str) -> bool:
        return project_key in self._claims

    def active_runs(self) -> list[DeployRun]:
        return list(self._claims.values())

    # -- execution ------------------------------------------------------------

    async def execute_deploy(
        self,
        target: DeployTarget,
        trigger: DeployTrigger,
        commit_hash: str | None = None,
    ) -> DeployResult:
        """Pull the project and restart it if the pull brought changes."""
        run = self._claim(target, trigger, commit_hash)
        if run is None:
            logger.info("Deploy for %s skipped: already in progress", target.key)
            result = DeployResult(state=DeployRunState.skipped)
            DEPLOYMENTS_TOTAL.labels(trigger=trigger.value, status=result.state.value).inc()
            await self._notify(target, trigger, result, commit_hash)
            return result

        started = time.monotonic()
        has_changes = False
        try:
            run.state = DeployRunState.running
            logger.info("Deploy %s started for %s (trigger=%s)", run.run_id, target.key, trigger.value)
            pull = await self.git.pull_changes(target.path)
            has_changes = pull.has_changes
            if has_changes:
                await self.runtime.restart_project(target.path)
            else:
                logger.info("No changes for %s; containers left running", target.key)
            run.state = DeployRunState.succeeded
        except Exception as exc:
            run.state = DeployRunState.failed
            run.error = scrub_credentials(str(exc)) or type(exc).__name__
            logger.error("Deploy %s failed for %s: %s", run.run_id, target.key, run.error)
        finally:
            self._release(run)

        result = DeployResult(state=run.state, has_changes=has_changes, error=run.error, run=run)
        DEPLOYMENTS_TOTAL.labels(trigger=trigger.value, status=run.state.value).inc()
        DEPLOY_DURATION.labels(trigger=trigger.value, status=run.state.value).observe(time.monotonic() - started)
        self._record(target, run, has_changes)
        await self._notify(target, trigger, result, commit_hash)
        return result

    def dispatch(
        self,
        target: DeployTarget,
        trigger: DeployTrigger,
        commit_hash: str | None = None,
    ) -> asyncio.Task:
        """Schedule :meth:`execute_deploy` without waiting for it."""
        task = asyncio.create_task(self.execute_deploy(target, trigger, commit_hash))
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_task_done(target, t))
        return task

    def _on_task_done(self, target: DeployTarget, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Deploy task for %s was cancelled", target.key)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Deploy task for %s crashed: %s", target.key, exc)
            return
        result = task.result()
        if result.success:
            logger.info("Deployment completed for %s (changes: %s)", target.key, result.has_changes)
        elif result.skipped:
            logger.info("Deployment skipped for %s (already in progress)", target.key)
        else:
            logger.error("Deployment failed for %s: %s", target.key, result.error)

    async def shutdown(self) -> None:
        """Wait for dispatched deploys, then drop the registry."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._claims.clear()

    # -- side channels --------------------------------------------------------

    def _record(self, target: DeployTarget, run: DeployRun, has_changes: bool) -> None:
        if self.session_factory is None:
            return
        try:
            with self.session_factory() as db:
                db.add(
                    DeployLog(
                        run_id=run.run_id,
                        project_id=target.project_id,
                        project_key=target.key,
                        trigger=run.trigger,
                        status=run.state,
                        commit_hash=run.commit_hash,
                        has_changes=has_changes,
                        error=run.error,
                        started_at=run.started_at,
                        completed_at=datetime.now(UTC),
                    )
                )
                db.commit()
        except Exception:
            logger.exception("Failed to record deploy log for %s", target.key)

    async def _notify(
        self,
        target: DeployTarget,
        trigger: DeployTrigger,
        result: DeployResult,
        commit_hash: str | None,
    ) -> None:
        notification = DeployNotification(
            event=_NOTIFY_EVENTS[result.state],
            project=target.key,
            trigger=trigger.value,
            has_changes=result.has_changes,
            commit=commit_hash[:7] if commit_hash else None,
            error=result.error,
        )
        try:
            await self.notifier.notify(notification)
        except Exception:
            logger.exception("Notification sink failed for %s", target.key)
