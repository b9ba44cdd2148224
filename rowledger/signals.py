from dataclasses import dataclass


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class StopField:
    """Stop the remaining plugins of the current destination field."""


@dataclass(frozen=True)
class SkipRow:
    """Abandon the whole row.

    ``record`` overrides the migration's policy for writing an identifier map
    entry for the skipped row; ``None`` keeps the policy.
    """

    message: str | None = None
    record: bool | None = None


Signal = Continue | StopField | SkipRow

CONTINUE = Continue()
STOP_FIELD = StopField()


@dataclass(frozen=True)
class ProcessResult:
    value: object
    signal: Signal = CONTINUE

    @property
    def stopped(self) -> bool:
        return isinstance(self.signal, StopField)

    @property
    def skipped(self) -> bool:
        return isinstance(self.signal, SkipRow)
