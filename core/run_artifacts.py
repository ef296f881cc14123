"""Run artifact writers for edit plans and diagnostics."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any, Iterable


def write_run_report(
    edit_plan: dict[str, Any],
    diagnostics: list[dict[str, Any]],
    run_id: str,
    stats: dict[str, Any] | None = None,
    output_dir: str = "output/macro_reports",
) -> str:
    """Write a JSON run report holding the edit plan and diagnostics.

    Returns:
        Path of the written report.
    """
    os.makedirs(output_dir, exist_ok=True)
    payload: dict[str, Any] = {
        "run_id": run_id,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "edit_plan": edit_plan,
        "diagnostics": diagnostics,
        "stats": dict(stats or {}),
    }
    path = os.path.join(output_dir, f"{run_id}.json")
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
    return path


def write_diagnostics_jsonl(diagnostics: Iterable[dict[str, Any]], path: str) -> int:
    """Stream diagnostics to a JSONL file, one macro per line.

    Returns:
        Number of lines written.
    """
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    lines_written = 0
    with open(path, "w", encoding="utf-8") as f:
        for entry in diagnostics:
            f.write(json.dumps(entry, ensure_ascii=False) + "\n")
            lines_written += 1
    return lines_written
