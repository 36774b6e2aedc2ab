"""JSON and markdown alt-text reports."""

import json
from pathlib import Path
from typing import Optional

from autoalt.models import ImageRecord, VehicleSubject


def _md_escape(value: object) -> str:
    """Escape values for markdown table cells."""
    text = "" if value is None else str(value)
    return text.replace("|", "\\|").replace("\n", " ").strip()


def report_rows(records: list[ImageRecord], outputs: Optional[dict[str, str]] = None) -> list[dict]:
    """One JSON-ready row per representative, in record order."""
    outputs = outputs or {}
    rows = []
    for rank, record in enumerate(records, start=1):
        rows.append(
            {
                "rank": rank,
                "image_id": record.image_id,
                "filename": record.filename,
                "members": list(record.members),
                "descriptor": record.descriptor,
                "environment": record.environment,
                "alt_text": record.alt_text,
                "length": len(record.alt_text),
                "state": record.state.value,
                "error": record.error or None,
                "output": outputs.get(record.image_id),
            }
        )
    return rows


def write_json_report(report_path: Path, rows: list[dict]) -> None:
    with open(report_path, "w", encoding="utf-8") as f:
        json.dump(rows, f, indent=2)


def write_markdown_report(
    report_path: Path,
    *,
    archive: Path,
    output_folder: Path,
    backend: str,
    subject: VehicleSubject,
    total_images: int,
    rows: list[dict],
) -> None:
    """Write a markdown report with one row per unique image."""
    failed = sum(1 for row in rows if row.get("state") == "error")
    lines: list[str] = []
    lines.append("# autoalt Alt Text Report")
    lines.append("")
    lines.append(f"- Archive: `{archive}`")
    lines.append(f"- Output: `{output_folder}`")
    lines.append(f"- Backend: `{backend}`")
    lines.append(
        "- Vehicle: "
        + " / ".join(_md_escape(v) for v in subject.as_dict().values() if v)
    )
    lines.append(f"- Images in archive: `{total_images}`")
    lines.append(f"- Unique images: `{len(rows)}` ({failed} failed)")
    lines.append("")
    lines.append("| # | Filename | Duplicates | Descriptor | Environment | Alt text | Length | Output |")
    lines.append("|---:|---|---:|---|---|---|---:|---|")
    for row in rows:
        lines.append(
            "| "
            f"{row.get('rank', '')} | "
            f"{_md_escape(row.get('filename', ''))} | "
            f"{max(0, len(row.get('members', [])) - 1)} | "
            f"{_md_escape(row.get('descriptor', ''))} | "
            f"{_md_escape(row.get('environment', ''))} | "
            f"{_md_escape(row.get('alt_text', ''))} | "
            f"{row.get('length', '')} | "
            f"{_md_escape(row.get('output', ''))} |"
        )

    errors = [row for row in rows if row.get("error")]
    if errors:
        lines.append("")
        lines.append("## Failures")
        lines.append("")
        for row in errors:
            lines.append(f"- `{_md_escape(row.get('filename'))}`: {_md_escape(row.get('error'))}")

    report_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
