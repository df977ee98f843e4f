"""Tests for deploy notification sinks."""

import asyncio
import json
import logging

import httpx

from app.services.notifications import (
    DeployNotification,
    HttpNotificationSink,
    LoggingNotificationSink,
    build_notification_sink,
)
from app.services.webhook_signature import sign_payload


def _notification(**overrides) -> DeployNotification:
    data = {"event": "success", "project": "alice/shop", "trigger": "webhook", "has_changes": True, "commit": "abc1234"}
    data.update(overrides)
    return DeployNotification(**data)


def _patch_transport(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", _client)


def test_to_dict_fills_timestamp():
    data = _notification().to_dict()
    assert data["event"] == "success"
    assert data["project"] == "alice/shop"
    assert data["timestamp"]


def test_http_sink_posts_signed_body(monkeypatch):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = request.content
        captured["headers"] = request.headers
        return httpx.Response(204)

    _patch_transport(monkeypatch, handler)
    sink = HttpNotificationSink("https://hooks.example/deploys", secret="notify-secret")
    asyncio.run(sink.notify(_notification()))

    body = captured["body"]
    assert json.loads(body)["commit"] == "abc1234"
    assert captured["headers"]["x-dployr-event"] == "success"
    assert captured["headers"]["x-dployr-signature"] == sign_payload("notify-secret", body)


def test_http_sink_without_secret_is_unsigned(monkeypatch):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["headers"] = request.headers
        return httpx.Response(200)

    _patch_transport(monkeypatch, handler)
    asyncio.run(HttpNotificationSink("https://hooks.example/deploys").notify(_notification(event="skip")))
    assert "x-dployr-signature" not in captured["headers"]


def test_http_sink_swallows_transport_errors(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    _patch_transport(monkeypatch, handler)
    asyncio.run(HttpNotificationSink("https://hooks.example/deploys").notify(_notification(event="failure")))


def test_default_sink_logs():
    sink = build_notification_sink()
    assert isinstance(sink, LoggingNotificationSink)
    asyncio.run(sink.notify(_notification()))


def test_logging_sink_includes_failure_reason(caplog):
    with caplog.at_level(logging.INFO, logger="app.services.notifications"):
        asyncio.run(LoggingNotificationSink().notify(_notification(event="failure", error="Git pull failed: boom")))
    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert "Git pull failed: boom" in record.getMessage()


def test_logging_sink_success_stays_info(caplog):
    with caplog.at_level(logging.INFO, logger="app.services.notifications"):
        asyncio.run(LoggingNotificationSink().notify(_notification()))
    record = caplog.records[-1]
    assert record.levelno == logging.INFO
    assert "alice/shop" in record.getMessage()
