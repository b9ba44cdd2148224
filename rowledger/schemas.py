from dataclasses import dataclass, field


@dataclass(frozen=True)
class RowMessage:
    source_key: tuple[object, ...] | None
    message: str


@dataclass
class RunCounts:
    processed: int = 0
    imported: int = 0
    skipped: int = 0
    unchanged: int = 0
    failed: int = 0
    messages: list[RowMessage] = field(default_factory=list)


@dataclass(frozen=True)
class RunSummary:
    run_id: int
    migration_id: str
    trigger_source: str
    status: str
    processed: int
    imported: int
    skipped: int
    unchanged: int
    failed: int
    messages: list[RowMessage]
    error: str | None = None


@dataclass(frozen=True)
class RollbackResult:
    migration_id: str
    rolled_back: int
