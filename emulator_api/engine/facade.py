from __future__ import annotations

from typing import Protocol

from emulator_api.engine.models import AccountStorage, BlockRef, CoverageReport


class EngineError(RuntimeError):
    pass


class EngineBusyError(EngineError):
    pass


class InvalidHeightError(EngineError):
    pass


class AccountNotFoundError(EngineError):
    pass


class SnapshotsDisabledError(EngineError):
    pass


class SnapshotExistsError(EngineError):
    pass


class SnapshotNotFoundError(EngineError):
    pass


class EmulatorEngine(Protocol):
    """The narrow slice of the emulator the control-plane talks to.

    All calls are synchronous. Anything that goes wrong is raised as an
    `EngineError` (or subclass); callers never get partial results.
    """

    def latest_block(self, *, include_uncommitted: bool = False) -> BlockRef:  # pragma: no cover
        ...

    def commit_block(self) -> None:  # pragma: no cover
        ...

    def rollback_to_height(self, height: int) -> None:  # pragma: no cover
        ...

    def list_snapshots(self) -> list[str]:  # pragma: no cover
        ...

    def create_snapshot(self, name: str) -> None:  # pragma: no cover
        ...

    def load_snapshot(self, name: str) -> None:  # pragma: no cover
        ...

    def account_storage(self, address: str) -> AccountStorage:  # pragma: no cover
        ...

    def coverage_report(self) -> CoverageReport:  # pragma: no cover
        ...

    def reset_coverage_report(self) -> None:  # pragma: no cover
        ...

    def service_public_key(self) -> str:  # pragma: no cover
        ...
