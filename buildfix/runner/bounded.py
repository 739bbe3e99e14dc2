from __future__ import annotations

import contextlib
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol

from buildfix.errors import FailureKind, PipelineFailure


class CommandOutcome(str, Enum):
    success = "success"
    nonzero_exit = "nonzero-exit"
    timeout = "timeout"


# Exit status reported when the program could not be launched at all (shell convention).
LAUNCH_FAILED_EXIT = 127


@dataclass(frozen=True)
class CommandResult:
    """
    Result of one bounded subprocess invocation.

    `output` is stdout and stderr merged through a single pipe, so the bytes appear in the
    order the process wrote them. It is populated for every outcome, including timeouts
    (whatever was captured before the kill).
    """

    program: str
    args: tuple[str, ...]
    outcome: CommandOutcome
    output: bytes = b""
    exit_code: Optional[int] = None
    deadline_s: float = 0.0
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome == CommandOutcome.success

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")

    def describe(self) -> str:
        if self.outcome == CommandOutcome.timeout:
            return f"command timed out after {_fmt_seconds(self.deadline_s)}"
        if self.outcome == CommandOutcome.nonzero_exit:
            return f"exit status {self.exit_code}"
        return "ok"


class CommandRunner(Protocol):
    def __call__(self, work_dir: str, deadline_s: float, program: str, *args: str) -> CommandResult: ...


def _fmt_seconds(s: float) -> str:
    return f"{int(s)}s" if float(s).is_integer() else f"{s:.3g}s"


def _kill_process_group(proc: subprocess.Popen) -> None:
    """SIGKILL the child and anything it spawned (the child leads its own session on POSIX)."""
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


def run_command(
    work_dir: str,
    deadline_s: float,
    program: str,
    *args: str,
    env: Dict[str, str] | None = None,
    kill_grace_s: float = 5.0,
) -> CommandResult:
    """
    Run `program args...` in `work_dir` with a hard wall-clock deadline.

    - GIT_TERMINAL_PROMPT=0 is set so auth failures error out instead of waiting on a prompt.
    - A reader thread drains the merged output pipe while this thread waits on the process.
    - On deadline the process group is killed and the process is still reaped before
      returning, so nothing launched here outlives the call.
    - No retries.
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)
    full_env["GIT_TERMINAL_PROMPT"] = "0"

    argv = (program, *args)
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            list(argv),
            cwd=work_dir,
            env=full_env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            start_new_session=(os.name == "posix"),
        )
    except OSError as e:
        return CommandResult(
            program=program,
            args=tuple(args),
            outcome=CommandOutcome.nonzero_exit,
            output=f"{program}: {e}\n".encode("utf-8"),
            exit_code=LAUNCH_FAILED_EXIT,
            deadline_s=float(deadline_s),
            duration_s=round(time.monotonic() - started, 3),
        )

    chunks: List[bytes] = []

    def _drain() -> None:
        assert proc.stdout is not None
        while True:
            chunk = proc.stdout.read1(65536)
            if not chunk:
                return
            chunks.append(chunk)

    reader = threading.Thread(target=_drain, name="buildfix_cmd_reader", daemon=True)
    reader.start()

    timed_out = False
    try:
        proc.wait(timeout=deadline_s)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_group(proc)
        # Confirm termination before returning.
        proc.wait()

    reader.join(timeout=kill_grace_s)
    if reader.is_alive():
        # A descendant still holds the pipe open after the child exited; take the group down.
        _kill_process_group(proc)
        reader.join(timeout=kill_grace_s)
    with contextlib.suppress(Exception):
        if proc.stdout is not None:
            proc.stdout.close()

    output = b"".join(list(chunks))
    duration = round(time.monotonic() - started, 3)
    if timed_out:
        return CommandResult(
            program=program,
            args=tuple(args),
            outcome=CommandOutcome.timeout,
            output=output,
            exit_code=proc.returncode,
            deadline_s=float(deadline_s),
            duration_s=duration,
        )
    return CommandResult(
        program=program,
        args=tuple(args),
        outcome=CommandOutcome.success if proc.returncode == 0 else CommandOutcome.nonzero_exit,
        output=output,
        exit_code=proc.returncode,
        deadline_s=float(deadline_s),
        duration_s=duration,
    )


def raise_for_result(result: CommandResult, *, kind: FailureKind, stage: str, what: str) -> CommandResult:
    """Turn a failed command into a `PipelineFailure` ("<what> failed: exit status 1")."""
    if result.ok:
        return result
    raise PipelineFailure(kind, stage, f"{what} failed: {result.describe()}", output=result.text)


@dataclass
class BoundedRunner:
    """
    `CommandRunner` bound to fixed env/grace settings; the default runner the pipeline uses.
    """

    kill_grace_s: float = 5.0
    env: Dict[str, str] = field(default_factory=dict)

    def __call__(self, work_dir: str, deadline_s: float, program: str, *args: str) -> CommandResult:
        return run_command(work_dir, deadline_s, program, *args, env=self.env, kill_grace_s=self.kill_grace_s)
