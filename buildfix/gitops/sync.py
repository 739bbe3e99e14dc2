from __future__ import annotations

from buildfix.errors import FailureKind
from buildfix.runner.bounded import CommandResult, CommandRunner, raise_for_result
from buildfix.settings import Settings
from buildfix.workspace.manager import Workspace


def clone_url(*, owner: str, name: str, token: str, host: str = "github.com") -> str:
    # Short-lived installation token in the userinfo; it ends up in the workspace's
    # .git/config, which is deleted with the workspace.
    return f"https://x-access-token:{token}@{host}/{owner}/{name}.git"


def sync_repository(
    ws: Workspace,
    *,
    owner: str,
    name: str,
    branch: str,
    sha: str,
    token: str,
    runner: CommandRunner,
    settings: Settings,
) -> CommandResult:
    """
    Reproduce the failing state in `ws`: shallow clone, checkout the branch, hard reset to `sha`.

    The reset is what pins the tree to the failing commit rather than whatever the branch tip
    is now. Depth is fixed (`settings.clone_depth`); a sha deeper than that fails at reset.
    Any step failing raises `PipelineFailure(sync-failure)`.
    """
    url = clone_url(owner=owner, name=name, token=token, host=settings.git_host)

    # --depth implies --single-branch, so name the branch or only the default one is fetched.
    raise_for_result(
        runner(
            ws.path,
            settings.clone_timeout_s,
            "git",
            "clone",
            "--depth",
            str(settings.clone_depth),
            "--branch",
            branch,
            url,
            ".",
        ),
        kind=FailureKind.sync_failure,
        stage="clone",
        what="clone",
    )
    raise_for_result(
        runner(ws.path, settings.git_step_timeout_s, "git", "checkout", branch),
        kind=FailureKind.sync_failure,
        stage="checkout",
        what="checkout branch",
    )
    return raise_for_result(
        runner(ws.path, settings.git_step_timeout_s, "git", "reset", "--hard", sha),
        kind=FailureKind.sync_failure,
        stage="reset",
        what="reset",
    )
