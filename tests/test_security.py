"""Tests for return-URL sanitising and blocked upload files."""

import pytest

from app.services.security import BLOCKED_FILES, remove_blocked_files, sanitize_return_url


class TestSanitizeReturnUrl:
    @pytest.mark.parametrize("url", ["/", "/projects", "/projects/shop-1/settings", "/a_b.c~d-e"])
    def test_local_paths_pass(self, url):
        assert sanitize_return_url(url, "/dashboard") == url

    @pytest.mark.parametrize(
        "url",
        [
            "https://evil.example/",
            "//evil.example",
            "/\\evil.example",
            "javascript:alert(1)",
            "projects",
            "/projects?next=//evil",
            "/projects#frag",
            "/%2F%2Fevil",
            "/../etc/passwd",
            "/projects/../admin",
            "/pro\njects",
            "",
            None,
            42,
        ],
    )
    def test_unsafe_values_fall_back(self, url):
        assert sanitize_return_url(url, "/dashboard") == "/dashboard"

    def test_dots_inside_segment_allowed(self):
        assert sanitize_return_url("/files/v1..2", "/") == "/files/v1..2"


class TestRemoveBlockedFiles:
    def test_removes_only_top_level_descriptors(self, tmp_path):
        for name in BLOCKED_FILES:
            (tmp_path / name).write_text("x")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "Dockerfile").write_text("x")
        (tmp_path / "index.html").write_text("x")

        removed = remove_blocked_files(tmp_path)

        assert sorted(removed) == sorted(str(tmp_path / name) for name in BLOCKED_FILES)
        assert (tmp_path / "sub" / "Dockerfile").exists()
        assert (tmp_path / "index.html").exists()

    def test_case_sensitive_names(self, tmp_path):
        (tmp_path / "dockerfile").write_text("x")
        assert remove_blocked_files(tmp_path) == []

    def test_directory_named_like_blocked_file_is_kept(self, tmp_path):
        (tmp_path / "Dockerfile").mkdir()
        assert remove_blocked_files(tmp_path) == []

    def test_missing_directory(self, tmp_path):
        assert remove_blocked_files(tmp_path / "missing") == []
        assert remove_blocked_files(None) == []
