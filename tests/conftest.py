from __future__ import annotations

import os
from types import SimpleNamespace
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from buildfix.runner.bounded import CommandOutcome, CommandResult
from buildfix.settings import Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep tests deterministic and isolated from developer machine env.
    """
    for k in list(os.environ.keys()):
        if k.startswith("BUILDFIX_"):
            monkeypatch.delenv(k, raising=False)


def ok(out: str = "") -> CommandResult:
    return CommandResult(program="", args=(), outcome=CommandOutcome.success, output=out.encode(), exit_code=0)


def fail(out: str = "", code: int = 1) -> CommandResult:
    return CommandResult(program="", args=(), outcome=CommandOutcome.nonzero_exit, output=out.encode(), exit_code=code)


def timed_out(out: str = "", deadline_s: float = 900.0) -> CommandResult:
    return CommandResult(
        program="", args=(), outcome=CommandOutcome.timeout, output=out.encode(), exit_code=-9, deadline_s=deadline_s
    )


Reply = Union[CommandResult, Callable[[str, Tuple[str, ...]], CommandResult]]


@dataclass
class Call:
    work_dir: str
    deadline_s: float
    argv: Tuple[str, ...]
    work_dir_existed: bool


@dataclass
class ScriptedRunner:
    """
    Fake `CommandRunner`: replies are keyed by argv prefix (longest match wins).
    Unscripted commands succeed; `git rev-parse` answers with `head_sha`.
    """

    replies: Dict[Tuple[str, ...], Reply] = field(default_factory=dict)
    head_sha: str = "f00dfeedcafe"
    calls: List[Call] = field(default_factory=list)

    def on(self, *prefix: str, reply: Reply) -> "ScriptedRunner":
        self.replies[tuple(prefix)] = reply
        return self

    def __call__(self, work_dir: str, deadline_s: float, program: str, *args: str) -> CommandResult:
        argv = (program, *args)
        self.calls.append(Call(work_dir=work_dir, deadline_s=deadline_s, argv=argv, work_dir_existed=os.path.isdir(work_dir)))
        best: Optional[Tuple[str, ...]] = None
        for prefix in self.replies:
            if argv[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is not None:
            reply = self.replies[best]
            res = reply(work_dir, argv) if callable(reply) else reply
        elif argv[:3] == ("git", "rev-parse", "HEAD"):
            res = ok(self.head_sha + "\n")
        else:
            res = ok()
        return CommandResult(
            program=program,
            args=tuple(args),
            outcome=res.outcome,
            output=res.output,
            exit_code=res.exit_code,
            deadline_s=deadline_s if res.outcome == CommandOutcome.timeout else res.deadline_s,
            duration_s=res.duration_s,
        )

    def argvs(self) -> List[Tuple[str, ...]]:
        return [c.argv for c in self.calls]

    def called(self, *prefix: str) -> bool:
        return any(a[: len(prefix)] == prefix for a in self.argvs())


@pytest.fixture
def scripted_runner() -> ScriptedRunner:
    return ScriptedRunner()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        workspace_root=str(tmp_path / "workspaces"),
        audit_log_path=str(tmp_path / "audit" / "audit.jsonl"),
        run_store_dir=str(tmp_path / "runs"),
    )


@pytest.fixture
def agent_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Pretend the agent CLI is installed."""
    import shutil

    real_which = shutil.which

    def fake_which(cmd, *args, **kwargs):
        if cmd == "plandex":
            return "/usr/local/bin/plandex"
        return real_which(cmd, *args, **kwargs)

    monkeypatch.setattr(shutil, "which", fake_which)


@pytest.fixture
def cmd() -> SimpleNamespace:
    """Canned `CommandResult` builders: cmd.ok(...), cmd.fail(...), cmd.timed_out(...)."""
    return SimpleNamespace(ok=ok, fail=fail, timed_out=timed_out)
