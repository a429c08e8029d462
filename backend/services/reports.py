"""Aggregate outcomes of the scheduled batch runs."""

from dataclasses import asdict, dataclass, field


@dataclass(frozen=True)
class SyncFailure:
    account_id: str
    platform: str
    error: str
    error_type: str = "SyncError"


@dataclass
class RefreshReport:
    succeeded: int = 0
    failed: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SyncReport:
    success: int = 0
    failed: int = 0
    failures: list[SyncFailure] = field(default_factory=list)
    skipped: bool = False
    cancelled: bool = False
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
