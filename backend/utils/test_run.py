#!/usr/bin/env python3
"""
utils/test_run.py — paym8 test runner with a rich summary.

Usage (run from the repository root):
  python backend/utils/test_run.py                 # full suite
  python backend/utils/test_run.py --unit          # unit tests only
  python backend/utils/test_run.py --integration   # integration tests only
  python backend/utils/test_run.py --coverage      # with coverage gate
  python backend/utils/test_run.py -x              # stop on first failure
  python backend/utils/test_run.py -k "settlement" # filter by keyword

Needs the test extra:  pip install -e ".[test]"
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.theme import Theme

THEME = Theme({
    "pass":   "bold bright_green",
    "fail":   "bold bright_red",
    "warn":   "bright_yellow",
    "dim":    "dim white",
    "muted":  "bright_black",
    "unit":   "cyan",
    "intg":   "magenta",
    "accent": "bright_cyan",
})

con = Console(theme=THEME, highlight=False)

# Ledger rules and the test modules that exercise them.
_RULES = [
    ("Balances sum to zero within rounding", "BALANCE_INTEGRITY",
     ("test_balance_calculator", "test_balance_service_units", "test_balances")),
    ("Plan has at most N-1 payments, none to self", "—",
     ("test_settlement_planner",)),
    ("Every ledger write recomputes in the same transaction", "INTERNAL_ERROR",
     ("test_balances", "test_expense_service_units", "test_payment_service_units")),
    ("Membership changes re-divide every expense", "—",
     ("test_balances", "test_group_service_units")),
    ("Members with ledger entries cannot be removed", "MEMBER_HAS_LEDGER_ENTRIES",
     ("test_groups", "test_group_service_units")),
    ("Amounts have at most two decimal places", "INVALID_AMOUNT_PRECISION",
     ("test_validation_schemas", "test_expenses", "test_payments")),
]


@dataclass
class TResult:
    nodeid:   str
    outcome:  str      # passed | failed | skipped
    duration: float
    reason:   str = ""

    @property
    def tier(self) -> str:
        return "unit" if "/unit/" in self.nodeid.replace("\\", "/") else "integration"

    @property
    def module_stem(self) -> str:
        return Path(self.nodeid.split("::")[0]).stem


@dataclass
class Stats:
    results: list[TResult] = field(default_factory=list)
    elapsed: float = 0.0

    def count(self, outcome: str, tier: str | None = None) -> int:
        return sum(
            1 for r in self.results
            if r.outcome == outcome and (tier is None or r.tier == tier)
        )

    @property
    def ok(self) -> bool:
        return bool(self.results) and self.count("failed") == 0


class Collector:
    """pytest plugin: records each test outcome and advances the progress bar."""

    def __init__(self, progress: Progress, task_id):
        self.results: list[TResult] = []
        self._progress = progress
        self._task = task_id
        self._t0: dict[str, float] = {}

    def pytest_collection_finish(self, session):
        self._progress.update(self._task, total=len(session.items))

    def pytest_runtest_logstart(self, nodeid, location):
        self._t0[nodeid] = time.perf_counter()

    def pytest_runtest_logreport(self, report):
        if report.when != "call" and report.outcome == "passed":
            return
        if report.when == "teardown" and report.outcome == "skipped":
            return

        reason = ""
        if report.failed and report.longrepr:
            lines = [ln.strip() for ln in str(report.longrepr).splitlines() if ln.strip()]
            reason = lines[-1][:120] if lines else ""

        self.results.append(TResult(
            nodeid=report.nodeid,
            outcome="failed" if report.failed else report.outcome,
            duration=time.perf_counter() - self._t0.get(report.nodeid, time.perf_counter()),
            reason=reason,
        ))
        self._progress.advance(self._task)


def render_modules(st: Stats) -> Table:
    tbl = Table(title="[muted]Per-Module[/]", title_justify="left",
                box=box.ROUNDED, border_style="muted", header_style="bold dim")
    tbl.add_column("Module", min_width=28)
    tbl.add_column("Tier", width=6)
    tbl.add_column("n", justify="right")
    tbl.add_column("✘", justify="right")
    tbl.add_column("ms", justify="right")

    modules: dict[str, list[TResult]] = {}
    for r in st.results:
        modules.setdefault(r.module_stem, []).append(r)

    for name, rs in sorted(modules.items()):
        tier = rs[0].tier
        failed = sum(1 for r in rs if r.outcome == "failed")
        tbl.add_row(
            name,
            "[unit]UNIT[/]" if tier == "unit" else "[intg]INTG[/]",
            str(len(rs)),
            f"[fail]{failed}[/]" if failed else "[muted]0[/]",
            f"[dim]{sum(r.duration for r in rs) * 1000:.0f}[/]",
        )
    return tbl


def render_rules(st: Stats) -> Table:
    ran = {r.module_stem for r in st.results}
    tbl = Table(title="[muted]Ledger Rules[/]", title_justify="left",
                box=box.ROUNDED, border_style="muted", header_style="bold dim")
    tbl.add_column("Rule", min_width=40)
    tbl.add_column("Error", no_wrap=True)
    tbl.add_column("", justify="center")

    for rule, code, modules in _RULES:
        covered = any(m in ran for m in modules)
        tbl.add_row(
            f"[dim]{rule}[/]",
            f"[accent]{code}[/]",
            "[pass]● covered[/]" if covered else "[warn]○ not run[/]",
        )
    return tbl


def render_failures(st: Stats) -> None:
    failures = [r for r in st.results if r.outcome == "failed"]
    if not failures:
        return
    con.rule(f"[fail] ✘  {len(failures)} failure(s) [/]", style="red", align="left")
    for r in failures:
        con.print(f"  [fail]✘[/] {escape(r.nodeid)}")
        if r.reason:
            con.print(f"      [dim]{escape(r.reason)}[/]")
    con.print()


def run(
        unit_only: bool = False,
        integration_only: bool = False,
        fail_fast: bool = False,
        with_coverage: bool = False,
        keyword: str = "",
        extra: list[str] | None = None,
) -> int:
    if unit_only:
        paths = ["backend/tests/unit"]
    elif integration_only:
        paths = ["backend/tests/integration"]
    else:
        paths = ["backend/tests/unit", "backend/tests/integration"]

    pytest_args = [*paths, "-q", "--tb=short"]
    if fail_fast:
        pytest_args.append("-x")
    if keyword:
        pytest_args += ["-k", keyword]
    if with_coverage:
        pytest_args += [
            "--cov=backend.app.services",
            "--cov=backend.app.schemas",
            "--cov-fail-under=90",
            "--cov-report=term-missing",
        ]
    if extra:
        pytest_args += extra

    con.print("\n  [bold bright_white]paym8[/]  [dim]·  ledger test suite[/]\n")

    progress = Progress(
        SpinnerColumn("line", style="accent"),
        TextColumn("[dim]{task.description}[/]"),
        BarColumn(bar_width=32, style="muted", complete_style="accent"),
        MofNCompleteColumn(),
        console=con,
    )
    task_id = progress.add_task("running tests", total=None)
    collector = Collector(progress, task_id)

    t0 = time.perf_counter()
    with progress:
        exit_code = pytest.main(pytest_args, plugins=[collector])
    st = Stats(results=collector.results, elapsed=time.perf_counter() - t0)

    con.print()
    render_failures(st)
    con.print(render_modules(st))
    con.print(render_rules(st))

    run_ok = st.ok and exit_code == 0
    summary = (
        f"{st.count('passed')} passed · {st.count('failed')} failed · "
        f"{st.count('skipped')} skipped · {st.elapsed:.2f}s"
    )
    con.print(Panel(
        f"[pass]✔  ALL TESTS PASSED[/]\n[dim]{summary}[/]" if run_ok
        else f"[fail]✘  BUILD FAILED[/]\n[dim]{summary}[/]",
        border_style="bright_green" if run_ok else "bright_red",
        padding=(0, 4),
    ))
    if with_coverage and exit_code != 0 and st.count("failed") == 0:
        con.print("  [warn]Coverage gate failed[/] [dim](required: --cov-fail-under=90).[/]")

    return 0 if run_ok else 1


def _cli() -> None:
    ap = argparse.ArgumentParser(
        prog="python backend/utils/test_run.py",
        description="paym8 — test runner",
    )
    ap.add_argument("--unit", action="store_true", help="Unit tests only")
    ap.add_argument("--integration", action="store_true", help="Integration tests only")
    ap.add_argument("--coverage", action="store_true", help="Coverage gate (needs pytest-cov)")
    ap.add_argument("-x", "--fail-fast", action="store_true", help="Stop after first failure")
    ap.add_argument("-k", metavar="EXPR", default="", help="Passed to pytest -k")
    args, remainder = ap.parse_known_args()

    if args.unit and args.integration:
        con.print("[warn]--unit and --integration are mutually exclusive; running full suite.[/]\n")
        args.unit = args.integration = False

    # Tests import backend.*, so run from the repository root.
    os.chdir(Path(__file__).resolve().parents[2])

    sys.exit(run(
        unit_only=args.unit,
        integration_only=args.integration,
        fail_fast=args.fail_fast,
        with_coverage=args.coverage,
        keyword=args.k,
        extra=remainder,
    ))


if __name__ == "__main__":
    _cli()
