from __future__ import annotations

import logging
import re

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from emulator_api.api.deps import form_value, get_engine
from emulator_api.api.models import ConfigInfo
from emulator_api.api.responses import BlockResult, PayloadResult, empty_ok, render
from emulator_api.engine.address import InvalidAddressError, parse_address
from emulator_api.engine.facade import (
    AccountNotFoundError,
    EmulatorEngine,
    EngineError,
    SnapshotExistsError,
    SnapshotNotFoundError,
)
from emulator_api.engine.models import UINT64_MAX

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/emulator")

# Routes registered without a method restriction answer to any of these.
ANY_METHOD = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_UINT_RE = re.compile(r"[0-9]+")


def parse_height(raw: str) -> int:
    """Parse a base-10 unsigned 64-bit block height or raise a 400."""

    if not _UINT_RE.fullmatch(raw):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="height must be an unsigned integer")
    height = int(raw)
    if height > UINT64_MAX:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="height out of range")
    return height


def _engine_failure(operation: str) -> HTTPException:
    # Must be called from inside an `except` block so the traceback is logged.
    logger.exception("Engine failure during %s", operation)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Engine failure")


@router.api_route("/config", methods=ANY_METHOD)
async def config_route(engine: EmulatorEngine = Depends(get_engine)) -> Response:
    info = ConfigInfo(service_key=engine.service_public_key())
    return render(PayloadResult(payload=info, indent="\t"))


@router.api_route("/newBlock", methods=ANY_METHOD)
async def commit_block_route(engine: EmulatorEngine = Depends(get_engine)) -> Response:
    try:
        engine.commit_block()
        head = engine.latest_block()
    except EngineError as e:
        raise _engine_failure("commit block") from e
    return render(BlockResult(ref=head))


@router.post("/rollback")
async def rollback_route(request: Request, engine: EmulatorEngine = Depends(get_engine)) -> Response:
    raw = await form_value(request, "height")
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="height is required")
    height = parse_height(raw)

    try:
        engine.rollback_to_height(height)
    except EngineError as e:
        raise _engine_failure("rollback") from e
    return empty_ok()


@router.get("/snapshots")
async def list_snapshots_route(engine: EmulatorEngine = Depends(get_engine)) -> Response:
    try:
        names = engine.list_snapshots()
    except EngineError as e:
        raise _engine_failure("list snapshots") from e
    return render(PayloadResult(payload=names))


def _snapshot_head(engine: EmulatorEngine, name: str) -> Response:
    """Head as it is *after* a snapshot create/load, labelled with the snapshot name."""

    try:
        head = engine.latest_block()
    except EngineError as e:
        raise _engine_failure("read head") from e
    return render(BlockResult(ref=head, context=name))


@router.post("/snapshots")
async def create_snapshot_route(request: Request, engine: EmulatorEngine = Depends(get_engine)) -> Response:
    name = await form_value(request, "name")
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="name is required")

    try:
        existing = engine.list_snapshots()
    except EngineError as e:
        raise _engine_failure("list snapshots") from e
    if name in existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Snapshot already exists")

    try:
        engine.create_snapshot(name)
    except SnapshotExistsError as e:
        # Lost a race with a concurrent create of the same name.
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Snapshot already exists") from e
    except EngineError as e:
        raise _engine_failure("create snapshot") from e

    return _snapshot_head(engine, name)


@router.put("/snapshots/{name}")
async def load_snapshot_route(name: str, engine: EmulatorEngine = Depends(get_engine)) -> Response:
    try:
        existing = engine.list_snapshots()
    except EngineError as e:
        raise _engine_failure("list snapshots") from e
    if name not in existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshot not found")

    try:
        engine.load_snapshot(name)
    except SnapshotNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshot not found") from e
    except EngineError as e:
        raise _engine_failure("load snapshot") from e

    return _snapshot_head(engine, name)


@router.api_route("/storages/{address}", methods=ANY_METHOD)
async def storage_route(address: str, engine: EmulatorEngine = Depends(get_engine)) -> Response:
    try:
        addr = parse_address(address)
    except InvalidAddressError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid address") from e

    try:
        storage = engine.account_storage(addr)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from e
    except EngineError as e:
        raise _engine_failure("account storage") from e
    return render(PayloadResult(payload=storage))


@router.get("/codeCoverage")
async def coverage_report_route(engine: EmulatorEngine = Depends(get_engine)) -> Response:
    try:
        report = engine.coverage_report()
    except EngineError as e:
        raise _engine_failure("coverage report") from e
    return render(PayloadResult(payload=report))


@router.put("/codeCoverage/reset")
async def reset_coverage_route(engine: EmulatorEngine = Depends(get_engine)) -> Response:
    try:
        engine.reset_coverage_report()
    except EngineError as e:
        raise _engine_failure("reset coverage") from e
    return empty_ok()
