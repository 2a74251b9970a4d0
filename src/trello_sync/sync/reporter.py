"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync sessions:

- ``summary_message`` -- the single end-of-session notification.
- ``format_sync_report`` -- full post-sync summary.
- ``format_dry_run_preview`` -- dry-run preview grouped by operation kind.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import Classification, OperationKind, OperationStatus

if TYPE_CHECKING:
    from .models import SyncErrorInfo, SyncReport


def summary_message(errors: list[SyncErrorInfo]) -> str:
    """``"Done!"`` or ``"<n> failure(s): <first error>"``."""
    if not errors:
        return "Done!"
    return f"{len(errors)} failure(s): {errors[0].message}"


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one entry.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"{report.command} ({report.direction.value}, {report.scope.value})"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"{len(report.created_remote)} created, "
        f"{len(report.updated_remote)} updated, "
        f"{len(report.deleted_remote)} deleted remotely; "
        f"{len(report.local_changes)} local changes, "
        f"{len(report.failed)} failed, {len(report.skipped)} skipped"
    )
    lines.append("")

    sections = [
        ("Created (remote):", report.created_remote),
        ("Updated (remote):", report.updated_remote),
        ("Deleted (remote):", report.deleted_remote),
    ]
    for title, results in sections:
        if results:
            lines.append(title)
            for r in results:
                lines.append(f"  {r.entity_kind.value} '{r.title}'")
            lines.append("")

    if report.local_changes:
        lines.append("Changed (local):")
        for change in report.local_changes:
            lines.append(
                f"  {change.action.value} {change.entity_kind.value} "
                f"'{change.title}'"
            )
        lines.append("")

    if report.failed:
        lines.append("Failed:")
        for r in report.failed:
            lines.append(
                f"  {r.kind.value} {r.entity_kind.value} '{r.title}': {r.error}"
            )
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} operations")
        lines.append("")

    lines.append(report.message)
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by operation kind.

    Each planned operation is shown as ``[KIND] entity-kind 'title'``.

    Args:
        report: A dry-run sync report (``dry_run=True``).

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append("DRY RUN -- No changes will be made")
    lines.append(f"Command: {report.command}")
    lines.append("")

    groups: dict[OperationKind, list[str]] = defaultdict(list)
    for r in report.mutations:
        groups[r.kind].append(f"{r.entity_kind.value} '{r.title}'")

    for kind in (OperationKind.DELETE, OperationKind.CREATE, OperationKind.UPDATE):
        if kind not in groups:
            continue
        lines.append(f"[{kind.value.upper()}]")
        for label in groups[kind]:
            lines.append(f"  {label}")
        lines.append("")

    if report.local_changes:
        lines.append("[LOCAL]")
        for change in report.local_changes:
            lines.append(
                f"  {change.action.value} {change.entity_kind.value} "
                f"'{change.title}'"
            )
        lines.append("")

    unchanged = sum(
        1
        for state in report.classifications.values()
        if state is Classification.UNCHANGED
    )
    if unchanged:
        lines.append(f"Unchanged: {unchanged} entities")
        lines.append("")

    if not groups and not report.local_changes:
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        report: The sync report.

    Returns:
        Dict with session info, counts, and per-operation details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "op_id": r.op_id,
            "kind": r.kind.value,
            "local_id": r.local_id,
            "entity_kind": r.entity_kind.value,
            "title": r.title,
            "status": r.status.value,
        }
        if r.retry_count:
            entry["retry_count"] = r.retry_count
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "command": report.command,
        "direction": report.direction.value,
        "scope": report.scope.value,
        "dry_run": report.dry_run,
        "state": report.state.value,
        "message": report.message,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "operations": len(report.mutations),
            "created_remote": len(report.created_remote),
            "updated_remote": len(report.updated_remote),
            "deleted_remote": len(report.deleted_remote),
            "local_changes": len(report.local_changes),
            "failed": len(report.failed),
            "skipped": len(report.skipped),
            "cancelled": sum(
                1
                for r in report.results
                if r.status is OperationStatus.CANCELLED
            ),
        },
        "results": results_list,
        "local_changes": [
            {
                "action": c.action.value,
                "local_id": c.local_id,
                "entity_kind": c.entity_kind.value,
                "title": c.title,
            }
            for c in report.local_changes
        ],
        "errors": [e.model_dump() for e in report.errors],
    }
