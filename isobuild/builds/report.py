"""Status reporting for a build run.

Keeps one outcome per selected build and renders the summary printed at
the end of a run or after an interrupt.
"""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.markup import escape

from isobuild.templates.models import BuildRegistry
from isobuild.types import BuildOutcome, BuildStatus

STATUS_STYLES: dict[BuildStatus, str] = {
    BuildStatus.BUILT: "green",
    BuildStatus.SKIPPED: "red",
    BuildStatus.ABORTED: "red",
    BuildStatus.NOT_PROCESSED: "",
}


class BuildReport:
    """Outcomes of the builds selected for one run."""

    def __init__(self, registry: BuildRegistry, build_ids: list[int]) -> None:
        self.outcomes: dict[int, BuildOutcome] = {
            build_id: BuildOutcome(build_id=build_id, name=registry.name(build_id))
            for build_id in build_ids
        }
        self.current: int | None = None

    def start(self, build_id: int) -> None:
        self.current = build_id

    def mark_built(self, build_id: int, image_path: Path) -> None:
        outcome = self.outcomes[build_id]
        outcome.status = BuildStatus.BUILT
        outcome.detail = str(image_path)
        outcome.image_path = image_path

    def mark_skipped(self, build_id: int, reason: str) -> None:
        outcome = self.outcomes[build_id]
        outcome.status = BuildStatus.SKIPPED
        outcome.detail = reason

    def abort(self) -> None:
        """Mark the in-flight build as aborted.

        A build that already has an outcome keeps it, and builds that were
        never started stay "not processed".
        """
        if self.current is None:
            return
        outcome = self.outcomes[self.current]
        if outcome.status is BuildStatus.NOT_PROCESSED:
            outcome.status = BuildStatus.ABORTED

    @property
    def built_count(self) -> int:
        return sum(
            1 for o in self.outcomes.values() if o.status is BuildStatus.BUILT
        )

    @property
    def skipped_count(self) -> int:
        return len(self.outcomes) - self.built_count

    def __len__(self) -> int:
        return len(self.outcomes)


def format_status(outcome: BuildOutcome) -> str:
    """Render an outcome's status as rich markup."""
    label = outcome.status.value.upper()
    style = STATUS_STYLES[outcome.status]
    text = f"[{style}]{label}[/{style}]" if style else label
    if outcome.detail:
        text += f" ({escape(outcome.detail)})"
    return text


def render_report(report: BuildReport, console: Console) -> None:
    """Print one status line per selected build and the totals.

    Args:
        report: Outcomes to render.
        console: Rich console to print to.
    """
    if not len(report):
        return
    console.print()
    console.print("[bold]Processed templates builds status:[/bold]")
    for outcome in report.outcomes.values():
        name = escape(outcome.name)
        console.print(f"  * [bold]{name:<30}[/bold] {format_status(outcome)}")
    console.print()
    console.print(
        f"Total: {report.built_count} built, {report.skipped_count} skipped images"
    )


__all__ = ["STATUS_STYLES", "BuildReport", "format_status", "render_report"]
