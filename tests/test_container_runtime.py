"""Tests for the docker compose runtime."""

import asyncio
import os

import pytest

from app.services.container_runtime import ComposeContainerRuntime, ContainerRuntimeError, to_host_path


@pytest.fixture()
def fake_docker(tmp_path):
    """A stand-in docker binary that records its argv."""
    log = tmp_path / "argv.log"
    script = tmp_path / "docker"
    script.write_text(f'#!/bin/sh\necho "$@" >> {log}\nif [ "$FAIL" = "1" ]; then echo boom >&2; exit 1; fi\n')
    os.chmod(script, 0o755)
    return script, log


class TestToHostPath:
    def test_translates_users_prefix(self):
        assert to_host_path("/app/users/jo/site", "/app/users", "/opt/dployr/users") == "/opt/dployr/users/jo/site"

    def test_leaves_other_paths(self):
        assert to_host_path("/srv/site", "/app/users", "/opt/dployr/users") == "/srv/site"

    def test_requires_segment_boundary(self):
        assert to_host_path("/app/users2/jo", "/app/users", "/opt/dployr/users") == "/app/users2/jo"


class TestComposeRuntime:
    def _runtime(self, script):
        return ComposeContainerRuntime(
            docker_binary=str(script), users_path="/app/users", host_users_path="/opt/dployr/users"
        )

    def test_restart(self, fake_docker):
        script, log = fake_docker
        asyncio.run(self._runtime(script).restart_project("/app/users/jo/site"))
        assert log.read_text().strip() == (
            "compose -f /opt/dployr/users/jo/site/docker-compose.yml "
            "--project-directory /opt/dployr/users/jo/site restart"
        )

    def test_start_and_stop(self, fake_docker):
        script, log = fake_docker
        runtime = self._runtime(script)
        asyncio.run(runtime.start_project("/app/users/jo/site"))
        asyncio.run(runtime.stop_project("/app/users/jo/site"))
        lines = log.read_text().splitlines()
        assert lines[0].endswith("up -d")
        assert lines[1].endswith("down")

    def test_failure_raises(self, fake_docker, monkeypatch):
        script, _log = fake_docker
        monkeypatch.setenv("FAIL", "1")
        with pytest.raises(ContainerRuntimeError, match="boom"):
            asyncio.run(self._runtime(script).restart_project("/app/users/jo/site"))

    def test_list_and_logs(self, fake_docker):
        script, log = fake_docker
        runtime = self._runtime(script)
        asyncio.run(runtime.list_containers("/app/users/jo/site"))
        asyncio.run(runtime.logs("/app/users/jo/site", tail=50))
        lines = log.read_text().splitlines()
        assert lines[0].endswith("ps --all")
        assert lines[1].endswith("logs --no-color --tail 50")

    def test_logs_rejects_bad_tail(self, fake_docker):
        script, _log = fake_docker
        with pytest.raises(ValueError):
            asyncio.run(self._runtime(script).logs("/app/users/jo/site", tail=0))
