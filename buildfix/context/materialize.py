from __future__ import annotations

import os

from buildfix.errors import FailureKind, PipelineFailure
from buildfix.models import FixBuildPayload
from buildfix.workspace.manager import Workspace

DEFAULT_CONTEXT_FILE = "BUILD_FAILURE_CONTEXT.md"


def render_failure_context(payload: FixBuildPayload) -> str:
    """
    Render the markdown the fixing agent reads. Annotations keep request order; empty
    sections are left out.
    """
    lines: list[str] = []
    lines.append("# Build failure context")
    lines.append("")

    if payload.output_summary:
        lines.append("## Output summary")
        lines.append("")
        lines.append(payload.output_summary)
        lines.append("")

    if payload.check_run_url:
        lines.append(f"Check run: {payload.check_run_url}")
        lines.append("")

    if payload.workflow_run_url:
        lines.append(f"Workflow run: {payload.workflow_run_url}")
        lines.append("")

    if payload.annotations:
        lines.append("## Annotations")
        lines.append("")
        for a in payload.annotations:
            lines.append(f"- **{a.path}** (lines {a.start_line}-{a.end_line}): {a.message}")
            if a.title:
                lines.append(f"  - {a.title}")
            if a.raw_details:
                lines.append("  - Details:")
                for ln in a.raw_details.split("\n"):
                    lines.append(f"    {ln}")

    return "\n".join(lines) + "\n"


def _exclude_from_git(ws: Workspace, file_name: str) -> None:
    # Keeps `git add -A` from committing the context file; the agent still reads it from the root.
    info_dir = ws.join(".git", "info")
    if not os.path.isdir(ws.join(".git")):
        return
    os.makedirs(info_dir, exist_ok=True)
    with open(os.path.join(info_dir, "exclude"), "a", encoding="utf-8") as f:
        f.write(f"\n/{file_name}\n")


def materialize_context(ws: Workspace, payload: FixBuildPayload, *, file_name: str = DEFAULT_CONTEXT_FILE) -> str:
    path = ws.join(file_name)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(render_failure_context(payload))
        os.chmod(path, 0o644)
        _exclude_from_git(ws, file_name)
    except OSError as e:
        raise PipelineFailure(
            FailureKind.context_failure,
            "context",
            f"failed to write context file: {e}",
        ) from e
    return path
