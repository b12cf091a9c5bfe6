from __future__ import annotations

import dataclasses
import json

import fakeredis
from fastapi.testclient import TestClient

from emulator_api.api.deps import get_settings
from emulator_api.api.responses import BlockResult, PayloadResult, empty_ok, render
from emulator_api.engine.models import BlockRef, CoverageReport, LocationCoverage
from emulator_api.main import app
from emulator_api.settings import settings_from_env


def test_block_result_omits_missing_context() -> None:
    resp = render(BlockResult(ref=BlockRef(height=7, block_id="ab")))
    assert resp.status_code == 200
    assert resp.media_type == "application/json"
    assert json.loads(resp.body) == {"height": 7, "blockId": "ab"}


def test_block_result_with_context() -> None:
    resp = render(BlockResult(ref=BlockRef(height=7, block_id="ab"), context="snap"))
    assert json.loads(resp.body) == {"height": 7, "blockId": "ab", "context": "snap"}


def test_payload_result_writes_models_as_is() -> None:
    report = CoverageReport(coverage={"L": LocationCoverage(line_hits={1: 1})})
    body = json.loads(render(PayloadResult(payload=report)).body)
    assert body["coverage"]["L"] == {"line_hits": {"1": 1}, "statements": 1, "missed_lines": [], "percentage": "100.0%"}

    assert json.loads(render(PayloadResult(payload=["a", "b"])).body) == ["a", "b"]


def test_unencodable_payload_is_500_with_empty_body() -> None:
    resp = render(PayloadResult(payload=object()))
    assert resp.status_code == 500
    assert resp.body == b""


def test_empty_ok() -> None:
    resp = empty_ok()
    assert resp.status_code == 200
    assert resp.body == b""


def test_disabled_snapshots_surface_as_engine_failure(
    client_and_redis: tuple[TestClient, fakeredis.FakeRedis],
) -> None:
    client, _ = client_and_redis
    app.dependency_overrides[get_settings] = lambda: dataclasses.replace(settings_from_env(), snapshots_enabled=False)

    assert client.get("/emulator/snapshots").status_code == 500
    assert client.post("/emulator/snapshots", data={"name": "x"}).status_code == 500
    # Unrelated operations keep working.
    assert client.post("/emulator/newBlock").status_code == 200
