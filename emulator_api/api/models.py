from __future__ import annotations

from pydantic import BaseModel, Field


class BlockResponse(BaseModel):
    height: int
    block_id: str = Field(..., serialization_alias="blockId")

    # Snapshot name, only for snapshot create/load.
    context: str | None = None


class ConfigInfo(BaseModel):
    service_key: str
