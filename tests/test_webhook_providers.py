"""Tests for provider detection and payload extraction."""

import pytest

from app.services.webhook_providers import (
    BitbucketAdapter,
    CommitInfo,
    GitHubAdapter,
    GitLabAdapter,
    detect_provider,
    get_adapter,
)
from app.services.webhook_signature import WebhookProvider


class TestDetectProvider:
    def test_github(self):
        assert detect_provider({"x-github-event": "push"}) == WebhookProvider.github

    def test_gitlab(self):
        assert detect_provider({"x-gitlab-event": "Push Hook"}) == WebhookProvider.gitlab

    def test_bitbucket(self):
        assert detect_provider({"x-event-key": "repo:push"}) == WebhookProvider.bitbucket

    def test_unknown(self):
        assert detect_provider({"user-agent": "curl"}) is None

    def test_empty_marker_is_ignored(self):
        assert detect_provider({"x-github-event": ""}) is None

    def test_first_marker_wins(self):
        headers = {"x-event-key": "repo:push", "x-github-event": "push"}
        assert detect_provider(headers) == WebhookProvider.github

    def test_get_adapter(self):
        assert isinstance(get_adapter(WebhookProvider.gitlab), GitLabAdapter)


class TestIsPush:
    @pytest.mark.parametrize(
        "adapter, headers, expected",
        [
            (GitHubAdapter(), {"x-github-event": "push"}, True),
            (GitHubAdapter(), {"x-github-event": "ping"}, False),
            (GitLabAdapter(), {"x-gitlab-event": "Push Hook"}, True),
            (GitLabAdapter(), {"x-gitlab-event": "Tag Push Hook"}, False),
            (BitbucketAdapter(), {"x-event-key": "repo:push"}, True),
            (BitbucketAdapter(), {"x-event-key": "pullrequest:created"}, False),
        ],
    )
    def test_push_event_names(self, adapter, headers, expected):
        assert adapter.is_push(headers) is expected


class TestRefBranch:
    def test_strips_heads_prefix(self):
        assert GitHubAdapter().extract_branch({"ref": "refs/heads/main"}) == "main"

    def test_nested_branch_name(self):
        assert GitLabAdapter().extract_branch({"ref": "refs/heads/feature/login"}) == "feature/login"

    def test_unprefixed_ref_returned_as_is(self):
        assert GitHubAdapter().extract_branch({"ref": "develop"}) == "develop"

    def test_tag_ref_does_not_look_like_a_branch(self):
        assert GitHubAdapter().extract_branch({"ref": "refs/tags/v1.0"}) == "refs/tags/v1.0"

    @pytest.mark.parametrize("payload", [{}, {"ref": None}, {"ref": 42}, {"ref": ""}, []])
    def test_missing_ref(self, payload):
        assert GitHubAdapter().extract_branch(payload) is None


class TestCommitExtraction:
    def test_github(self):
        payload = {"after": "a" * 40, "head_commit": {"message": "Fix bug"}}
        commit = GitHubAdapter().extract_commit(payload)
        assert commit == CommitInfo(hash="a" * 40, message="Fix bug")
        assert commit.short_hash == "aaaaaaa"

    def test_github_without_head_commit(self):
        commit = GitHubAdapter().extract_commit({"after": "b" * 40, "head_commit": None})
        assert commit.hash == "b" * 40
        assert commit.message is None

    def test_gitlab_prefers_after(self):
        payload = {"after": "c" * 40, "checkout_sha": "d" * 40, "commits": [{"message": "First"}]}
        commit = GitLabAdapter().extract_commit(payload)
        assert commit.hash == "c" * 40
        assert commit.message == "First"

    def test_gitlab_falls_back_to_checkout_sha(self):
        commit = GitLabAdapter().extract_commit({"checkout_sha": "d" * 40, "commits": []})
        assert commit.hash == "d" * 40
        assert commit.message is None

    def test_missing_hash_has_no_short_hash(self):
        assert GitHubAdapter().extract_commit({}).short_hash is None


class TestBitbucket:
    payload = {
        "push": {
            "changes": [
                {"new": {"name": "main", "target": {"hash": "e" * 40, "message": "Deploy"}}},
                {"new": {"name": "other"}},
            ]
        }
    }

    def test_branch_from_first_change(self):
        assert BitbucketAdapter().extract_branch(self.payload) == "main"

    def test_commit_from_first_change(self):
        commit = BitbucketAdapter().extract_commit(self.payload)
        assert commit.hash == "e" * 40
        assert commit.message == "Deploy"

    @pytest.mark.parametrize(
        "payload",
        [{}, {"push": {}}, {"push": {"changes": []}}, {"push": {"changes": [{"new": None}]}}],
    )
    def test_missing_change(self, payload):
        assert BitbucketAdapter().extract_branch(payload) is None
        assert BitbucketAdapter().extract_commit(payload) == CommitInfo()
