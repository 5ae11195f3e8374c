"""Validation gates for Flowstack phases.

A gate is an ordered list of named checks (``format``, ``lint``,
``typecheck``, ``test``, ``coverage``...). Running a gate asks a
:class:`CheckRunner` for each check in declared order and stops at the
first failure. Nothing is retried; the operator remediates and re-runs.

Check runners:

- :class:`CommandCheckRunner` maps check names onto shell commands and
  treats exit code 0 as a pass. Non-zero exits fail with the captured
  stderr as the reason; commands exceeding the timeout fail with
  ``"timeout"``.
- :class:`PredicateCheckRunner` evaluates in-process ``(name, predicate)``
  checks.
- :class:`StaticCheckRunner` returns canned outcomes (dry runs, tests).
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from .flowstack_logging import log_performance
from .models import CheckResult, GateResult

logger = logging.getLogger("flowstack.gates")

DEFAULT_CHECKS = ("format", "lint", "typecheck", "test", "coverage")
OUTPUT_TRUNCATE_LENGTH = 2000

_PERCENT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*%")

PredicateOutcome = Union[bool, CheckResult, Tuple[bool, str]]


class CheckRunner(Protocol):
    """Anything that can run a named check."""

    def run(self, name: str) -> CheckResult:
        ...


@dataclass(frozen=True, slots=True)
class ValidationGate:
    """An ordered list of check names guarding a phase."""

    checks: Tuple[str, ...] = DEFAULT_CHECKS

    @classmethod
    def of(cls, checks: Iterable[str]) -> "ValidationGate":
        names = tuple(name.strip().lower() for name in checks if name and name.strip())
        if not names:
            raise ValueError("A validation gate needs at least one check")
        return cls(checks=names)

    def run(self, runner: CheckRunner, phase: str = "") -> GateResult:
        """Run checks in declared order, stopping at the first failure."""
        results: List[CheckResult] = []
        for name in self.checks:
            result = runner.run(name)
            results.append(result)
            if result.passed:
                logger.info(f"Gate check '{name}' passed")
            else:
                logger.warning(f"Gate check '{name}' failed: {result.reason}")
                break
        passed = all(result.passed for result in results)
        return GateResult(phase=phase, passed=passed, results=results)


# ---------------------------------------------------------------------------
# In-process checks
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Check:
    """A named predicate returning pass or fail."""

    name: str
    predicate: Callable[[], PredicateOutcome]

    def evaluate(self) -> CheckResult:
        start = time.time()
        try:
            outcome = self.predicate()
        except Exception as e:
            # An exploding predicate is a failed check, reported to the operator
            return CheckResult.failure(self.name, f"{type(e).__name__}: {e}", time.time() - start)
        duration = time.time() - start
        if isinstance(outcome, CheckResult):
            return outcome
        if isinstance(outcome, tuple):
            passed, reason = outcome
            if passed:
                return CheckResult.success(self.name, duration)
            return CheckResult.failure(self.name, reason, duration)
        if outcome:
            return CheckResult.success(self.name, duration)
        return CheckResult.failure(self.name, "check returned False", duration)


class PredicateCheckRunner:
    """Runs checks registered as in-process predicates."""

    def __init__(self, checks: Iterable[Check]):
        self._checks: Dict[str, Check] = {check.name: check for check in checks}

    def run(self, name: str) -> CheckResult:
        check = self._checks.get(name)
        if check is None:
            return CheckResult.failure(name, f"No check registered for '{name}'")
        return check.evaluate()


class StaticCheckRunner:
    """Returns pre-configured outcomes; ``True`` passes, a string is a failure reason."""

    def __init__(self, outcomes: Mapping[str, Union[bool, str]], default: Union[bool, str] = True):
        self.outcomes = dict(outcomes)
        self.default = default
        self.calls: List[str] = []

    def run(self, name: str) -> CheckResult:
        self.calls.append(name)
        outcome = self.outcomes.get(name, self.default)
        if outcome is True:
            return CheckResult.success(name)
        reason = outcome if isinstance(outcome, str) else "check failed"
        return CheckResult.failure(name, reason)


# ---------------------------------------------------------------------------
# Shell command checks
# ---------------------------------------------------------------------------


def parse_coverage_percent(output: str) -> Optional[float]:
    """Return the last percentage figure found in coverage tool output."""
    matches = _PERCENT_PATTERN.findall(output or "")
    if not matches:
        return None
    return float(matches[-1])


def _truncate(text: str) -> str:
    text = text.strip()
    if len(text) > OUTPUT_TRUNCATE_LENGTH:
        return text[-OUTPUT_TRUNCATE_LENGTH:]
    return text


class CommandCheckRunner:
    """Maps check names to shell commands and runs them as subprocesses."""

    def __init__(
        self,
        commands: Mapping[str, str],
        cwd: Optional[Union[str, Path]] = None,
        timeout: float = 600.0,
        coverage_threshold: Optional[float] = None,
        coverage_checks: Iterable[str] = ("coverage",),
    ):
        self.commands = dict(commands)
        self.cwd = Path(cwd) if cwd else None
        self.timeout = timeout
        self.coverage_threshold = coverage_threshold
        self.coverage_checks = frozenset(coverage_checks)

    @log_performance("run_check")
    def run(self, name: str) -> CheckResult:
        command = self.commands.get(name)
        if not command:
            return CheckResult.failure(name, f"No command configured for check '{name}'")

        try:
            command_args = shlex.split(command)
        except ValueError as e:
            return CheckResult.failure(name, f"Invalid command syntax: {e}")
        if not command_args:
            return CheckResult.failure(name, "Empty command")

        logger.info(f"Running check '{name}': {command}")
        start = time.time()
        try:
            proc = subprocess.run(
                command_args,
                shell=False,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return CheckResult.failure(name, "timeout", time.time() - start)
        except FileNotFoundError:
            return CheckResult.failure(name, f"Command not found: {command_args[0]}", time.time() - start)
        duration = time.time() - start

        if proc.returncode != 0:
            reason = _truncate(proc.stderr or "") or _truncate(proc.stdout or "")
            return CheckResult.failure(name, reason or f"exit code {proc.returncode}", duration)

        if self.coverage_threshold is not None and name in self.coverage_checks:
            percent = parse_coverage_percent(proc.stdout)
            if percent is None:
                return CheckResult.failure(name, "Could not find a coverage percentage in the output", duration)
            if percent < self.coverage_threshold:
                return CheckResult.failure(
                    name,
                    f"coverage {percent:g}% is below the {self.coverage_threshold:g}% threshold",
                    duration,
                )

        return CheckResult.success(name, duration)
