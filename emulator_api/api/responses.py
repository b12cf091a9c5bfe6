from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Response, status
from fastapi.encoders import jsonable_encoder

from emulator_api.api.models import BlockResponse
from emulator_api.engine.models import BlockRef

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"


@dataclass(frozen=True, slots=True)
class BlockResult:
    """Chain head after an operation; `context` carries the snapshot name when there is one."""

    ref: BlockRef
    context: str | None = None


@dataclass(frozen=True, slots=True)
class PayloadResult:
    """Any JSON-encodable domain object, written as-is."""

    payload: Any
    indent: str | None = None


Result = BlockResult | PayloadResult


def _encode(result: Result) -> str:
    if isinstance(result, BlockResult):
        body = BlockResponse(
            height=result.ref.height,
            block_id=result.ref.block_id,
            context=result.context or result.ref.label,
        )
        return body.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(jsonable_encoder(result.payload), indent=result.indent)


def render(result: Result, *, status_code: int = status.HTTP_200_OK) -> Response:
    try:
        content = _encode(result)
    except (TypeError, ValueError):
        logger.exception("Failed to encode %s", type(result).__name__)
        return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, media_type=JSON_MEDIA_TYPE)
    return Response(content=content, status_code=status_code, media_type=JSON_MEDIA_TYPE)


def empty_ok() -> Response:
    return Response(status_code=status.HTTP_200_OK, media_type=JSON_MEDIA_TYPE)
