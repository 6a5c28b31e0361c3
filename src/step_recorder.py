"""Step outcomes, run aggregation and the run summary."""

import inspect
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from harness_errors import FATAL_ERRORS, ScenarioAborted, is_timeout


class Outcome(str, Enum):
    OK = "OK"
    FAIL = "FAIL"
    WARN = "WARN"


class StepKind(str, Enum):
    REQUIRED = "required"
    OPTIONAL_WARN = "optional"
    OPTIONAL_STRICT = "strict"


def kind_for(strict: bool = False, required: bool = False) -> StepKind:
    if required:
        return StepKind.REQUIRED
    return StepKind.OPTIONAL_STRICT if strict else StepKind.OPTIONAL_WARN


@dataclass(frozen=True)
class ActionStep:
    name: str
    outcome: Outcome
    strict: bool
    kind: StepKind = StepKind.OPTIONAL_WARN
    note: str | None = None
    error: str | None = None
    # whatever the step's thunk returned; not part of the summary
    value: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "strict": self.strict,
            "kind": self.kind.value,
            "note": self.note,
            "error": self.error,
        }


def classify(kind: StepKind, failed: bool, error: BaseException | None = None) -> Outcome:
    if not failed:
        return Outcome.OK
    if kind in (StepKind.REQUIRED, StepKind.OPTIONAL_STRICT):
        return Outcome.FAIL
    if error is not None and isinstance(error, FATAL_ERRORS):
        return Outcome.FAIL
    return Outcome.WARN


def aggregate(steps) -> bool:
    """A run is ok iff no step FAILed; WARN steps never count against it."""
    return all(step.outcome is not Outcome.FAIL for step in steps)


def describe_error(error: BaseException) -> str:
    text = str(error) or type(error).__name__
    if is_timeout(error) and "timeout" not in text.lower():
        return f"timeout: {text}"
    return text


@dataclass
class TestRun:
    run_id: str
    url: str
    artifacts_dir: Path
    steps: list[ActionStep] = field(default_factory=list)
    finished_at: str | None = None

    __test__ = False  # not a pytest class

    @property
    def ok(self) -> bool:
        return aggregate(self.steps)

    def append(self, step: ActionStep) -> None:
        if self.finished_at is not None:
            raise RuntimeError(f"run {self.run_id} is finalized")
        self.steps.append(step)

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "url": self.url,
            "steps": [s.to_dict() for s in self.steps],
            "ok": self.ok,
            "finishedAt": self.finished_at,
        }


def write_summary(run: TestRun) -> Path:
    run.artifacts_dir.mkdir(parents=True, exist_ok=True)
    path = run.artifacts_dir / "summary.json"
    tmp = path.with_suffix(".json.tmp")
    tmp.write_text(json.dumps(run.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)
    return path


@asynccontextmanager
async def run_scope(run_id: str, url: str, artifacts_dir: Path, reporter):
    """Yield a fresh TestRun; its summary is written however the body exits."""
    run = TestRun(run_id=run_id, url=url, artifacts_dir=artifacts_dir)
    try:
        yield run
    except Exception as e:
        run.append(ActionStep("harness.crash", Outcome.FAIL, True, StepKind.REQUIRED, error=describe_error(e)))
        reporter.result("harness.crash", False, describe_error(e))
        raise
    finally:
        run.finished_at = datetime.now(timezone.utc).isoformat()
        try:
            path = write_summary(run)
            reporter.diag(f"📊 Run summary written: {path}")
        except OSError as e:
            reporter.diag(f"✖ Could not write run summary: {e}")


class StepRecorder:
    """Runs units of work and turns how they ended into ActionSteps.

    Failures never escape :meth:`record`; a FAIL raises :class:`ScenarioAborted`
    instead so the caller can skip the rest of its scenario.
    """

    def __init__(self, run: TestRun, reporter, snapshot=None, prefix: str = ""):
        self.run = run
        self.reporter = reporter
        self.snapshot = snapshot
        self.prefix = prefix

    def scoped(self, prefix: str) -> "StepRecorder":
        full = f"{self.prefix}.{prefix}" if self.prefix else prefix
        return StepRecorder(self.run, self.reporter, snapshot=self.snapshot, prefix=full)

    def key(self, name: str) -> str:
        return f"{self.prefix}.{name}" if self.prefix else name

    async def record(self, name: str, thunk, strict: bool = False, required: bool = False,
                     note: str | None = None, describe=None) -> ActionStep:
        """Run ``thunk`` (sync or async) as one step.

        A thunk returning ``False`` is an explicit failure. ``describe`` turns a
        successful return value into the step note.
        """
        kind = kind_for(strict, required)
        error = None
        value = None
        failed = False
        try:
            result = thunk()
            if inspect.isawaitable(result):
                result = await result
            value = result
            if value is False:
                failed = True
        except ScenarioAborted:
            raise
        except Exception as e:
            error = e
            failed = True
        outcome = classify(kind, failed, error)
        if outcome is Outcome.OK and note is None and describe is not None:
            try:
                note = describe(value)
            except Exception:
                note = None
        step = ActionStep(
            name=self.key(name),
            outcome=outcome,
            strict=kind is not StepKind.OPTIONAL_WARN,
            kind=kind,
            note=note if outcome is Outcome.OK else (note or ("explicit failure" if error is None else None)),
            error=describe_error(error) if error is not None else None,
            value=value,
        )
        return await self._finish(step)

    async def record_fact(self, name: str, ok: bool, strict: bool = False, required: bool = False,
                          note: str | None = None, error: str | None = None) -> ActionStep:
        """Record an outcome that was established elsewhere (e.g. during cleanup)."""
        kind = kind_for(strict, required)
        step = ActionStep(
            name=self.key(name),
            outcome=classify(kind, not ok),
            strict=kind is not StepKind.OPTIONAL_WARN,
            kind=kind,
            note=note,
            error=error,
        )
        return await self._finish(step, abort=False)

    async def _finish(self, step: ActionStep, abort: bool = True) -> ActionStep:
        self.run.append(step)
        if step.outcome is Outcome.OK:
            self.reporter.diag(f"✓ {step.name}")
            self.reporter.result(step.name, True, step.note)
            return step
        detail = step.error or step.note or ""
        if step.outcome is Outcome.WARN:
            self.reporter.diag(f"⚠️ {step.name}: {detail}")
            self.reporter.result(step.name, False, f"warning: {detail}" if detail else "warning")
        else:
            self.reporter.diag(f"✖ {step.name}: {detail}")
            self.reporter.result(step.name, False, detail or None)
        await self.take_snapshot(f"fail_{step.name}")
        if abort and step.outcome is Outcome.FAIL:
            raise ScenarioAborted(step)
        return step

    async def take_snapshot(self, label: str) -> list:
        """Best-effort screenshot + markup; diagnostic only, never fails the step."""
        if self.snapshot is None:
            return []
        try:
            written = await self.snapshot(label)
        except Exception as e:
            self.reporter.debug(f"⚠️ Could not save snapshot {label}: {e}")
            return []
        for path in written or []:
            self.reporter.debug(f"📸 Snapshot saved: {path}")
        return written or []
