from __future__ import annotations

from specimen_import.models.import_message import MessageLog
from specimen_import.models.import_result import ImportSummary

"""SUMMARY line and preview message rendering.

Format:
SUMMARY importer={name} mode={preview|commit} rows={processed}
        {classification}={n} ... errors={n} info={n} elapsed_sec={elapsed}
(one line; classifications in the importer's declared order)
"""

__all__ = [
    "format_elapsed",
    "render_summary_line",
    "render_messages",
]


def format_elapsed(seconds: float) -> str:
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        # Format very small numbers to avoid scientific notation
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def render_summary_line(summary: ImportSummary) -> str:
    """Render the SUMMARY line for one import run.

    Examples:
        >>> s = ImportSummary(importer="tubes", mode="preview", rows_processed=3,
        ...                   counts={"created": 2}, errors=1, info=0, elapsed_seconds=0.5)
        >>> render_summary_line(s)
        'SUMMARY importer=tubes mode=preview rows=3 created=2 errors=1 info=0 elapsed_sec=0.5'
    """
    parts = [
        f"importer={summary.importer}",
        f"mode={summary.mode}",
        f"rows={summary.rows_processed}",
    ]
    parts.extend(f"{name}={count}" for name, count in summary.counts.items())
    parts.append(f"errors={summary.errors}")
    parts.append(f"info={summary.info}")
    parts.append(f"elapsed_sec={format_elapsed(summary.elapsed_seconds)}")
    return "SUMMARY " + " ".join(parts)


def render_messages(messages: MessageLog) -> list[str]:
    """Preview lines, grouped by row then column: '<location> <SEVERITY> <details>'."""
    return [f"{m.location} {m.severity} {m.details}" for m in messages.grouped()]
