from __future__ import annotations

import shutil
from dataclasses import dataclass

from buildfix.errors import FailureKind, PipelineFailure
from buildfix.runner.bounded import CommandResult, CommandRunner, raise_for_result
from buildfix.settings import Settings
from buildfix.workspace.manager import Workspace


def fix_instruction(context_file: str = "BUILD_FAILURE_CONTEXT.md") -> str:
    return (
        "Fix the failing test(s) or build. "
        f"Read {context_file} for the failure output and annotations. "
        "Apply minimal changes, then run the failing test or build command to verify it passes. "
        "Do not create a new branch or open a PR."
    )


@dataclass(frozen=True)
class FixInvocation:
    describe: CommandResult
    apply: CommandResult


def ensure_agent_available(agent_bin: str) -> str:
    """
    Resolve the agent executable on PATH. A missing binary is a deployment defect,
    reported as `environment` (HTTP 501) rather than a per-request failure.
    """
    resolved = shutil.which(agent_bin)
    if not resolved:
        raise PipelineFailure(
            FailureKind.environment,
            "agent_preflight",
            f"{agent_bin} CLI not available in PATH; add {agent_bin} to the server image for fix_build",
        )
    return resolved


def invoke_fix(ws: Workspace, instruction: str, *, runner: CommandRunner, settings: Settings) -> FixInvocation:
    """
    Drive the agent non-interactively in two phases, both under `settings.agent_timeout_s`:

    1. `tell <instruction> --skip-menu`: plan/describe the fix
    2. `build --skip-menu`: apply the planned changes to the working tree and verify

    Either phase failing or timing out raises `PipelineFailure(fix-failure)`; a half-applied
    fix is treated the same as no fix.
    """
    agent = settings.agent_bin
    ensure_agent_available(agent)

    describe = raise_for_result(
        runner(ws.path, settings.agent_timeout_s, agent, "tell", instruction, "--skip-menu"),
        kind=FailureKind.fix_failure,
        stage=f"{agent}_tell",
        what=f"{agent} tell",
    )
    apply = raise_for_result(
        runner(ws.path, settings.agent_timeout_s, agent, "build", "--skip-menu"),
        kind=FailureKind.fix_failure,
        stage=f"{agent}_build",
        what=f"{agent} build",
    )
    return FixInvocation(describe=describe, apply=apply)
