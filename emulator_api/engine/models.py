from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, computed_field

UINT64_MAX = 2**64 - 1

GENESIS_PARENT_ID = "0" * 64


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


class BlockRef(BaseModel):
    """Reference to a committed (or pending) block: what the API reports as the head."""

    height: int = Field(..., ge=0, le=UINT64_MAX)
    block_id: str
    label: str | None = None


class BlockHeader(BaseModel):
    height: int = Field(..., ge=0, le=UINT64_MAX)
    parent_id: str
    timestamp: datetime
    state_root: str

    @property
    def id(self) -> str:
        # Content-derived: the same header always hashes to the same id, so a
        # header restored from a snapshot keeps its identity.
        return hashlib.sha3_256(canonical_json(self.model_dump(mode="json")).encode()).hexdigest()

    def ref(self, *, label: str | None = None) -> BlockRef:
        return BlockRef(height=self.height, block_id=self.id, label=label)


class AccountStorage(BaseModel):
    address: str

    # Path identifier -> stored value, split by storage domain.
    storage: dict[str, Any] = Field(default_factory=dict)
    public: dict[str, Any] = Field(default_factory=dict)
    private: dict[str, Any] = Field(default_factory=dict)


WorldState = dict[str, AccountStorage]


def state_root(state: WorldState) -> str:
    payload = {addr: acct.model_dump(mode="json") for addr, acct in state.items()}
    return hashlib.sha3_256(canonical_json(payload).encode()).hexdigest()


class LocationCoverage(BaseModel):
    line_hits: dict[int, int] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def statements(self) -> int:
        return len(self.line_hits)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def missed_lines(self) -> list[int]:
        return sorted(line for line, hits in self.line_hits.items() if hits == 0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def percentage(self) -> str:
        if not self.line_hits:
            return "0.0%"
        covered = sum(1 for hits in self.line_hits.values() if hits > 0)
        return f"{covered * 100 / len(self.line_hits):.1f}%"


class CoverageReport(BaseModel):
    coverage: dict[str, LocationCoverage] = Field(default_factory=dict)
    excluded_locations: list[str] = Field(default_factory=list)


class ChainImage(BaseModel):
    """Everything needed to put the chain back exactly where it was.

    - `blocks`: headers from genesis up to the head, indexed by height.
    - `states`: world state committed at each height.
    - `working`: the uncommitted world state on top of the head.
    """

    blocks: list[BlockHeader]
    states: dict[int, WorldState]
    working: WorldState

    @property
    def head(self) -> BlockHeader:
        return self.blocks[-1]
