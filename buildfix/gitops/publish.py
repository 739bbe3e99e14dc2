from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from buildfix.errors import FailureKind
from buildfix.runner.bounded import CommandOutcome, CommandRunner, raise_for_result
from buildfix.settings import Settings
from buildfix.workspace.manager import Workspace

NOTHING_TO_COMMIT = "nothing to commit"


@dataclass(frozen=True)
class PublishResult:
    branch: str
    committed: bool
    # HEAD after the commit attempt, if rev-parse worked.
    head_sha: Optional[str] = None

    @property
    def commit_sha(self) -> Optional[str]:
        """The new commit, or None when the commit was a no-op."""
        return self.head_sha if self.committed else None


def publish_changes(ws: Workspace, *, branch: str, runner: CommandRunner, settings: Settings) -> PublishResult:
    """
    Stage everything, commit with the fixed message, resolve HEAD, push to `branch`.

    - A commit that fails only because nothing is staged is a successful no-op.
    - rev-parse failing just leaves the sha empty.
    - The push always targets the request's branch as-is; no new branch, no PR, no rebase.
    """
    raise_for_result(
        runner(ws.path, settings.git_step_timeout_s, "git", "add", "-A"),
        kind=FailureKind.publish_failure,
        stage="add",
        what="git add",
    )

    committed = True
    commit = runner(ws.path, settings.git_step_timeout_s, "git", "commit", "-m", settings.commit_message)
    if not commit.ok:
        if commit.outcome != CommandOutcome.nonzero_exit or NOTHING_TO_COMMIT not in commit.text:
            raise_for_result(commit, kind=FailureKind.publish_failure, stage="commit", what="git commit")
        committed = False

    head_sha: Optional[str] = None
    head = runner(ws.path, settings.rev_parse_timeout_s, "git", "rev-parse", "HEAD")
    if head.ok:
        head_sha = head.text.strip() or None

    raise_for_result(
        runner(ws.path, settings.push_timeout_s, "git", "push", "origin", branch),
        kind=FailureKind.publish_failure,
        stage="push",
        what="git push",
    )
    return PublishResult(branch=branch, committed=committed, head_sha=head_sha)
