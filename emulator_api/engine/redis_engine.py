from __future__ import annotations

import functools
import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any, Literal, TypeVar

import redis
from cryptography.hazmat.primitives.asymmetric import ec

from emulator_api.engine.address import SERVICE_ADDRESS, InvalidAddressError, format_address, parse_address
from emulator_api.engine.facade import (
    AccountNotFoundError,
    EngineError,
    InvalidHeightError,
    SnapshotExistsError,
    SnapshotNotFoundError,
    SnapshotsDisabledError,
)
from emulator_api.engine.lock import engine_lock
from emulator_api.engine.models import (
    GENESIS_PARENT_ID,
    UINT64_MAX,
    AccountStorage,
    BlockHeader,
    BlockRef,
    ChainImage,
    CoverageReport,
    LocationCoverage,
    WorldState,
    state_root,
)
from emulator_api.engine.service_key import encode_public_key
from emulator_api.settings import Settings

logger = logging.getLogger(__name__)

GENESIS_TIMESTAMP = datetime(2018, 12, 19, 22, 32, 30, tzinfo=UTC)

StorageDomain = Literal["storage", "public", "private"]

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _store_errors(fn: Callable[..., T]) -> Callable[..., T]:
    """Surface Redis failures as `EngineError` so callers see one error family."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except redis.RedisError as e:
            raise EngineError(f"engine store failure: {e}") from e

    return wrapper


def _dump_state(state: WorldState) -> str:
    return json.dumps({addr: acct.model_dump(mode="json") for addr, acct in state.items()})


def _load_state(raw: str) -> WorldState:
    return {addr: AccountStorage.model_validate(data) for addr, data in json.loads(raw).items()}


class RedisEmulator:
    """Emulated chain whose whole state lives in Redis.

    Key layout (all under `settings.key_prefix`):
      - `{p}:blocks`          list of header JSON, index == height
      - `{p}:states`          hash height -> world state committed at that height
      - `{p}:working`         uncommitted world state on top of the head
      - `{p}:snapshots`       hash name -> ChainImage JSON
      - `{p}:snapshot_names`  list of names in creation order
      - `{p}:coverage:*`      per-location line hit counters
      - `{p}:lock`            mutation lock

    Mutations run under `engine_lock`; multi-key rewrites go through a
    MULTI/EXEC pipeline so a failure never leaves a half-moved head.
    """

    def __init__(self, *, r: redis.Redis, settings: Settings, service_key: ec.EllipticCurvePrivateKey) -> None:
        self.r = r
        self.settings = settings
        self._service_key = service_key

    def _key(self, *parts: str) -> str:
        return ":".join([self.settings.key_prefix, *parts])

    @property
    def _blocks_key(self) -> str:
        return self._key("blocks")

    @property
    def _states_key(self) -> str:
        return self._key("states")

    @property
    def _working_key(self) -> str:
        return self._key("working")

    @property
    def _snapshots_key(self) -> str:
        return self._key("snapshots")

    @property
    def _snapshot_names_key(self) -> str:
        return self._key("snapshot_names")

    @property
    def _coverage_locations_key(self) -> str:
        return self._key("coverage", "locations")

    @property
    def _coverage_excluded_key(self) -> str:
        return self._key("coverage", "excluded")

    def _coverage_key(self, location: str) -> str:
        return self._key("coverage", "loc", location)

    def _lock(self):
        return engine_lock(r=self.r, key=self._key("lock"), ttl_ms=self.settings.lock_ttl_ms)

    # -- chain state -----------------------------------------------------

    @_store_errors
    def bootstrap(self) -> BlockHeader:
        """Create the genesis block and service account if the chain is empty."""

        if self.r.llen(self._blocks_key) == 0:
            with self._lock():
                if self.r.llen(self._blocks_key) == 0:
                    service = AccountStorage(address=format_address(SERVICE_ADDRESS))
                    state: WorldState = {SERVICE_ADDRESS: service}
                    genesis = BlockHeader(
                        height=0,
                        parent_id=GENESIS_PARENT_ID,
                        timestamp=GENESIS_TIMESTAMP,
                        state_root=state_root(state),
                    )
                    pipe = self.r.pipeline(transaction=True)
                    pipe.rpush(self._blocks_key, genesis.model_dump_json())
                    pipe.hset(self._states_key, "0", _dump_state(state))
                    pipe.set(self._working_key, _dump_state(state))
                    pipe.execute()
                    logger.info("Created genesis block %s", genesis.id)
        return self._head()

    def _head(self) -> BlockHeader:
        raw = self.r.lindex(self._blocks_key, -1)
        if raw is None:
            raise EngineError("chain has no blocks")
        return BlockHeader.model_validate_json(raw)

    def _working(self) -> WorldState:
        raw = self.r.get(self._working_key)
        if raw is None:
            head = self._head()
            raw = self.r.hget(self._states_key, str(head.height))
            if raw is None:
                raise EngineError(f"missing committed state for height {head.height}")
        return _load_state(raw)

    def _image(self) -> ChainImage:
        blocks = [BlockHeader.model_validate_json(raw) for raw in self.r.lrange(self._blocks_key, 0, -1)]
        states = {int(h): _load_state(raw) for h, raw in self.r.hgetall(self._states_key).items()}
        return ChainImage(blocks=blocks, states=states, working=self._working())

    @_store_errors
    def latest_block(self, *, include_uncommitted: bool = False) -> BlockRef:
        head = self.bootstrap()
        if not include_uncommitted:
            return head.ref()

        root = state_root(self._working())
        if root == head.state_root:
            return head.ref()
        # Provisional reference for the block the working state would seal into.
        pending = BlockHeader(height=head.height + 1, parent_id=head.id, timestamp=head.timestamp, state_root=root)
        return pending.ref()

    @_store_errors
    def commit_block(self) -> None:
        self.bootstrap()
        with self._lock():
            head = self._head()
            working = self._working()
            header = BlockHeader(
                height=head.height + 1,
                parent_id=head.id,
                timestamp=_now(),
                state_root=state_root(working),
            )
            pipe = self.r.pipeline(transaction=True)
            pipe.rpush(self._blocks_key, header.model_dump_json())
            pipe.hset(self._states_key, str(header.height), _dump_state(working))
            pipe.execute()
        logger.info("Committed block height=%d id=%s", header.height, header.id)

    @_store_errors
    def rollback_to_height(self, height: int) -> None:
        if height < 0 or height > UINT64_MAX:
            raise InvalidHeightError(f"height {height} is not a valid block height")

        self.bootstrap()
        with self._lock():
            head = self._head()
            if height > head.height:
                raise InvalidHeightError(f"height {height} is above the current head ({head.height})")

            raw_state = self.r.hget(self._states_key, str(height))
            if raw_state is None:
                raise EngineError(f"missing committed state for height {height}")

            dropped = [str(h) for h in range(height + 1, head.height + 1)]
            pipe = self.r.pipeline(transaction=True)
            pipe.ltrim(self._blocks_key, 0, height)
            if dropped:
                pipe.hdel(self._states_key, *dropped)
            pipe.set(self._working_key, raw_state)
            pipe.execute()
        logger.info("Rolled back to height=%d (dropped %d blocks)", height, len(dropped))

    # -- snapshots -------------------------------------------------------

    def _require_snapshots(self) -> None:
        if not self.settings.snapshots_enabled:
            raise SnapshotsDisabledError("snapshots are disabled for this emulator")

    @_store_errors
    def list_snapshots(self) -> list[str]:
        self._require_snapshots()
        return list(self.r.lrange(self._snapshot_names_key, 0, -1))

    @_store_errors
    def create_snapshot(self, name: str) -> None:
        self._require_snapshots()
        if not name:
            raise EngineError("snapshot name must not be empty")

        self.bootstrap()
        with self._lock():
            image = self._image()
            # WATCH + MULTI: the image and its listed name land together or not at all,
            # and a concurrent create of the same name aborts instead of overwriting.
            with self.r.pipeline() as pipe:
                pipe.watch(self._snapshots_key)
                if pipe.hexists(self._snapshots_key, name):
                    raise SnapshotExistsError(f"snapshot already exists: {name}")
                pipe.multi()
                pipe.hset(self._snapshots_key, name, image.model_dump_json())
                pipe.rpush(self._snapshot_names_key, name)
                pipe.execute()
        logger.info("Created snapshot %r at height=%d", name, image.head.height)

    @_store_errors
    def load_snapshot(self, name: str) -> None:
        self._require_snapshots()
        with self._lock():
            raw = self.r.hget(self._snapshots_key, name)
            if raw is None:
                raise SnapshotNotFoundError(f"snapshot not found: {name}")
            image = ChainImage.model_validate_json(raw)

            pipe = self.r.pipeline(transaction=True)
            pipe.delete(self._blocks_key, self._states_key)
            pipe.rpush(self._blocks_key, *[b.model_dump_json() for b in image.blocks])
            pipe.hset(self._states_key, mapping={str(h): _dump_state(s) for h, s in image.states.items()})
            pipe.set(self._working_key, _dump_state(image.working))
            pipe.execute()
        logger.info("Loaded snapshot %r, head height=%d", name, image.head.height)

    # -- accounts --------------------------------------------------------

    @_store_errors
    def account_storage(self, address: str) -> AccountStorage:
        try:
            addr = parse_address(address)
        except InvalidAddressError as e:
            raise AccountNotFoundError(str(e)) from e

        self.bootstrap()
        account = self._working().get(addr)
        if account is None:
            raise AccountNotFoundError(f"account not found: {format_address(addr)}")
        return account

    @_store_errors
    def create_account(self, address: str | None = None) -> str:
        """Add an empty account to the working state and return its address."""

        self.bootstrap()
        with self._lock():
            state = self._working()
            if address is None:
                addr = hashlib.sha3_256(f"account:{len(state)}".encode()).hexdigest()[:16]
            else:
                addr = parse_address(address)
            if addr in state:
                raise EngineError(f"account already exists: {format_address(addr)}")
            state[addr] = AccountStorage(address=format_address(addr))
            self.r.set(self._working_key, _dump_state(state))
        return format_address(addr)

    @_store_errors
    def write_storage(self, address: str, *, domain: StorageDomain, path: str, value: Any) -> None:
        if domain not in ("storage", "public", "private"):
            raise ValueError(f"unknown storage domain: {domain}")

        addr = parse_address(address)
        self.bootstrap()
        with self._lock():
            state = self._working()
            account = state.get(addr)
            if account is None:
                raise AccountNotFoundError(f"account not found: {format_address(addr)}")
            getattr(account, domain)[path] = value
            self.r.set(self._working_key, _dump_state(state))

    def service_public_key(self) -> str:
        return encode_public_key(self._service_key)

    # -- coverage --------------------------------------------------------

    @_store_errors
    def record_coverage(self, location: str, line_hits: Mapping[int, int]) -> None:
        """Accumulate hit counts for `location`; a count of 0 registers an uncovered line."""

        if not self.settings.coverage_enabled:
            return
        if self.r.sismember(self._coverage_excluded_key, location):
            return
        pipe = self.r.pipeline(transaction=True)
        pipe.sadd(self._coverage_locations_key, location)
        for line, hits in line_hits.items():
            pipe.hincrby(self._coverage_key(location), str(line), int(hits))
        pipe.execute()

    @_store_errors
    def exclude_location(self, location: str) -> None:
        self.r.sadd(self._coverage_excluded_key, location)

    @_store_errors
    def coverage_report(self) -> CoverageReport:
        if not self.settings.coverage_enabled:
            return CoverageReport()

        coverage: dict[str, LocationCoverage] = {}
        for location in sorted(self.r.smembers(self._coverage_locations_key)):
            hits = self.r.hgetall(self._coverage_key(location))
            coverage[location] = LocationCoverage(line_hits={int(k): int(v) for k, v in hits.items()})
        excluded = sorted(self.r.smembers(self._coverage_excluded_key))
        return CoverageReport(coverage=coverage, excluded_locations=excluded)

    @_store_errors
    def reset_coverage_report(self) -> None:
        # Locations and their lines survive a reset; only the counters go back to zero.
        pipe = self.r.pipeline(transaction=True)
        for location in self.r.smembers(self._coverage_locations_key):
            lines = self.r.hkeys(self._coverage_key(location))
            if lines:
                pipe.hset(self._coverage_key(location), mapping={line: 0 for line in lines})
        pipe.execute()
        logger.info("Coverage report reset")
