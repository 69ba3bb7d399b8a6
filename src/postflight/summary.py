from __future__ import annotations

from dataclasses import dataclass


REPORT_HEADING = "## 🤖 Postflight Execution Report"
_ACTION_EMOJI = {
    "CREATE_PR": "🔀",
    "COMMIT_CHANGES": "💾",
    "PUSH": "⬆️",
    "WRITE_COMMENT": "💬",
    "NOTHING": "⏸️",
}


@dataclass(frozen=True)
class RunReport:
    title: str | None = None
    summary: str | None = None
    error: str | None = None
    duration_ms: int | None = None
    action: str | None = None
    commit_sha: str | None = None
    pr_link: str | None = None
    working_branch: str | None = None


def format_summary(report: RunReport) -> str:
    lines = [REPORT_HEADING, ""]
    if report.title:
        lines.extend([f"### {report.title}", ""])
    if report.summary:
        lines.extend([report.summary, ""])
    if report.error:
        lines.extend(["### ❌ Error", "", "```", report.error, "```", ""])

    lines.extend(["### 📊 Execution Details", ""])
    rows: list[tuple[str, str]] = []
    if report.action:
        emoji = _ACTION_EMOJI.get(report.action, "❔")
        rows.append(("Action", f"{emoji} {report.action}"))
    if report.working_branch:
        rows.append(("Branch", f"`{report.working_branch}`"))
    if report.commit_sha:
        rows.append(("Commit", f"`{report.commit_sha[:7]}`"))
    if report.pr_link:
        rows.append(("Pull Request", f"[View PR]({report.pr_link})"))
    if report.duration_ms is not None:
        rows.append(("Duration", f"{report.duration_ms / 1000:.1f}s"))

    if rows:
        lines.extend(["| Item | Value |", "|------|-------|"])
        lines.extend(f"| {name} | {value} |" for name, value in rows)
    else:
        lines.append("_No execution details available._")
    lines.append("")
    return "\n".join(lines) + "\n"
