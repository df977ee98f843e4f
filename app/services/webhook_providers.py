"""Provider adapters — event filtering and payload field extraction per git host."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from app.services.webhook_signature import WebhookProvider

_BRANCH_REF_PREFIX = "refs/heads/"


@dataclass(frozen=True)
class CommitInfo:
    hash: str | None = None
    message: str | None = None

    @property
    def short_hash(self) -> str | None:
        return self.hash[:7] if self.hash else None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


class ProviderAdapter:
    provider: WebhookProvider
    marker_header: str
    push_event: str

    def is_push(self, headers: Mapping[str, str]) -> bool:
        return headers.get(self.marker_header) == self.push_event

    def event_name(self, headers: Mapping[str, str]) -> str:
        return headers.get(self.marker_header, "")

    def extract_branch(self, payload: dict) -> str | None:
        raise NotImplementedError

    def extract_commit(self, payload: dict) -> CommitInfo:
        raise NotImplementedError


class _RefBranchMixin:
    def extract_branch(self, payload: dict) -> str | None:
        ref = _as_str(_as_dict(payload).get("ref"))
        if ref is None:
            return None
        if ref.startswith(_BRANCH_REF_PREFIX):
            return ref.removeprefix(_BRANCH_REF_PREFIX) or None
        return ref


class GitHubAdapter(_RefBranchMixin, ProviderAdapter):
    provider = WebhookProvider.github
    marker_header = "x-github-event"
    push_event = "push"

    def extract_commit(self, payload: dict) -> CommitInfo:
        payload = _as_dict(payload)
        head = _as_dict(payload.get("head_commit"))
        return CommitInfo(hash=_as_str(payload.get("after")), message=_as_str(head.get("message")))


class GitLabAdapter(_RefBranchMixin, ProviderAdapter):
    provider = WebhookProvider.gitlab
    marker_header = "x-gitlab-event"
    push_event = "Push Hook"

    def extract_commit(self, payload: dict) -> CommitInfo:
        payload = _as_dict(payload)
        commits = payload.get("commits")
        first = _as_dict(commits[0]) if isinstance(commits, list) and commits else {}
        return CommitInfo(
            hash=_as_str(payload.get("after")) or _as_str(payload.get("checkout_sha")),
            message=_as_str(first.get("message")),
        )


class BitbucketAdapter(ProviderAdapter):
    provider = WebhookProvider.bitbucket
    marker_header = "x-event-key"
    push_event = "repo:push"

    @staticmethod
    def _first_change_new(payload: dict) -> dict:
        changes = _as_dict(_as_dict(payload).get("push")).get("changes")
        if not isinstance(changes, list) or not changes:
            return {}
        return _as_dict(_as_dict(changes[0]).get("new"))

    def extract_branch(self, payload: dict) -> str | None:
        return _as_str(self._first_change_new(payload).get("name"))

    def extract_commit(self, payload: dict) -> CommitInfo:
        target = _as_dict(self._first_change_new(payload).get("target"))
        return CommitInfo(hash=_as_str(target.get("hash")), message=_as_str(target.get("message")))


# Detection order matters: the first marker header present wins.
ADAPTERS: dict[WebhookProvider, ProviderAdapter] = {
    WebhookProvider.github: GitHubAdapter(),
    WebhookProvider.gitlab: GitLabAdapter(),
    WebhookProvider.bitbucket: BitbucketAdapter(),
}


def detect_provider(headers: Mapping[str, str]) -> WebhookProvider | None:
    for provider, adapter in ADAPTERS.items():
        if headers.get(adapter.marker_header):
            return provider
    return None


def get_adapter(provider: WebhookProvider) -> ProviderAdapter:
    return ADAPTERS[provider]
