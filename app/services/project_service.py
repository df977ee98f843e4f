"""Project Service — project lookup and webhook registrations for deploys."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.deploy_log import DeployLog
from app.models.project import Project
from app.models.project_webhook import ProjectWebhook
from app.services.settings_crypto import decrypt_value, encrypt_value
from app.services.webhook_signature import generate_webhook_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployTarget:
    """Everything the deploy pipeline needs to know about a project."""

    project_id: UUID | None
    system_username: str
    project_name: str
    path: str

    @property
    def key(self) -> str:
        return f"{self.system_username}/{self.project_name}"


@dataclass(frozen=True)
class WebhookRegistration:
    id: int
    project: DeployTarget
    branch: str
    secret: str
    enabled: bool


def project_path(system_username: str, project_name: str, users_path: str | None = None) -> str:
    return str(Path(users_path or settings.users_path) / system_username / project_name)


class ProjectService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, project_id: UUID) -> Project | None:
        return self.db.get(Project, project_id)

    def get_by_name(self, system_username: str, name: str) -> Project | None:
        stmt = select(Project).where(Project.system_username == system_username, Project.name == name)
        return self.db.scalar(stmt)

    def create_project(self, system_username: str, name: str) -> Project:
        if not system_username.strip() or not name.strip():
            raise ValueError("Owner and project name are required")
        if self.get_by_name(system_username, name):
            raise ValueError("A project with this name already exists")
        project = Project(system_username=system_username.strip(), name=name.strip())
        self.db.add(project)
        self.db.flush()
        return project

    def get_deploy_target(self, project: Project) -> DeployTarget:
        return DeployTarget(
            project_id=project.project_id,
            system_username=project.system_username,
            project_name=project.name,
            path=project_path(project.system_username, project.name),
        )

    def get_webhook(self, webhook_id: int) -> ProjectWebhook | None:
        return self.db.get(ProjectWebhook, webhook_id)

    def get_webhook_for_project(self, project_id: UUID) -> ProjectWebhook | None:
        return self.db.scalar(select(ProjectWebhook).where(ProjectWebhook.project_id == project_id))

    def resolve_webhook(self, webhook_id: int) -> WebhookRegistration | None:
        """Return the enabled registration for *webhook_id*, or ``None``."""
        webhook = self.get_webhook(webhook_id)
        if not webhook or not webhook.is_enabled:
            return None
        project = self.get_by_id(webhook.project_id)
        if not project:
            logger.warning("Webhook %s points at missing project %s", webhook_id, webhook.project_id)
            return None
        return WebhookRegistration(
            id=webhook.id,
            project=self.get_deploy_target(project),
            branch=webhook.branch,
            secret=decrypt_value(webhook.secret_encrypted),
            enabled=webhook.is_enabled,
        )

    def create_webhook(self, project_id: UUID, branch: str = "main") -> tuple[ProjectWebhook, str]:
        """Issue a webhook for a project. Returns the row and the plaintext secret."""
        if not self.get_by_id(project_id):
            raise ValueError("Project not found")
        if self.get_webhook_for_project(project_id):
            raise ValueError("Project already has a webhook")
        branch = (branch or "main").strip()
        if not branch:
            raise ValueError("Branch is required")
        secret = generate_webhook_secret()
        webhook = ProjectWebhook(
            project_id=project_id,
            branch=branch,
            secret_encrypted=encrypt_value(secret),
            is_enabled=True,
        )
        self.db.add(webhook)
        self.db.flush()
        return webhook, secret

    def rotate_webhook_secret(self, webhook_id: int) -> str:
        webhook = self.get_webhook(webhook_id)
        if not webhook:
            raise ValueError("Webhook not found")
        secret = generate_webhook_secret()
        webhook.secret_encrypted = encrypt_value(secret)
        self.db.flush()
        logger.info("Rotated secret for webhook %s", webhook_id)
        return secret

    def set_webhook_enabled(self, webhook_id: int, enabled: bool) -> ProjectWebhook:
        webhook = self.get_webhook(webhook_id)
        if not webhook:
            raise ValueError("Webhook not found")
        webhook.is_enabled = enabled
        self.db.flush()
        return webhook

    def recent_deploy_logs(self, project_id: UUID, limit: int = 20) -> list[DeployLog]:
        stmt = (
            select(DeployLog)
            .where(DeployLog.project_id == project_id)
            .order_by(DeployLog.created_at.desc(), DeployLog.id.desc())
            .limit(limit)
        )
        return list(self.db.scalars(stmt).all())
