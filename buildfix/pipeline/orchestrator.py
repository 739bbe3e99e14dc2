from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from buildfix.code_engine.plandex import fix_instruction, invoke_fix
from buildfix.context.materialize import materialize_context
from buildfix.errors import FailureKind, PipelineFailure, status_for
from buildfix.gitops.publish import publish_changes
from buildfix.gitops.sync import sync_repository
from buildfix.integrations.emitter import IntegrationEmitter
from buildfix.models import FixBuildPayload, PipelineOutcome, StageRecord
from buildfix.policy.redaction import SecretRedactor
from buildfix.runner.bounded import BoundedRunner, CommandResult, CommandRunner
from buildfix.settings import Settings
from buildfix.telemetry.audit import AuditLogger
from buildfix.telemetry.evidence import build_run_record, persist_run_record
from buildfix.workspace.manager import WorkspaceManager

MISSING_FIELDS_MESSAGE = "missing required fields: repo.owner, repo.name, headBranch, headSha, installationToken"

# Keep audit records readable; full output is rarely needed past the last few KB.
OUTPUT_TAIL_CHARS = 4000

AuditWrite = Callable[[str, Dict[str, Any]], None]


def commit_identity_env(settings: Settings) -> Dict[str, str]:
    """GIT_AUTHOR_* / GIT_COMMITTER_* for the configured identity (empty when not configured)."""
    env: Dict[str, str] = {}
    if settings.git_author_name:
        env["GIT_AUTHOR_NAME"] = env["GIT_COMMITTER_NAME"] = settings.git_author_name
    if settings.git_author_email:
        env["GIT_AUTHOR_EMAIL"] = env["GIT_COMMITTER_EMAIL"] = settings.git_author_email
    return env


@dataclass
class _RecordingRunner:
    """
    Wraps the real runner for one request: every command lands in the stage timeline and the
    audit trail (argv and output redacted, so the clone URL's token never gets written).
    """

    inner: CommandRunner
    timeline: List[StageRecord]
    write: AuditWrite
    redact: SecretRedactor

    def __call__(self, work_dir: str, deadline_s: float, program: str, *args: str) -> CommandResult:
        name = f"{program} {args[0]}" if args else program
        self.write("stage.started", {"stage": name, "cmd": [self.redact(a) for a in (program, *args)], "deadline_s": deadline_s})
        res = self.inner(work_dir, deadline_s, program, *args)
        self.timeline.append(
            StageRecord(name=name, outcome=res.outcome.value, duration_s=res.duration_s, exit_code=res.exit_code)
        )
        finished: Dict[str, Any] = {
            "stage": name,
            "outcome": res.outcome.value,
            "exit_code": res.exit_code,
            "duration_s": res.duration_s,
        }
        if not res.ok:
            finished["output_tail"] = self.redact(res.text)[-OUTPUT_TAIL_CHARS:]
        self.write("stage.finished", finished)
        return res


class FixBuildPipeline:
    """
    validate -> acquire workspace -> sync -> write context -> agent tell -> agent build
    -> add -> commit (no-op tolerated) -> rev-parse -> push -> release workspace -> report

    Strictly linear. The first `PipelineFailure` ends the run; the workspace is released on
    every path before the outcome is returned. Exactly one `PipelineOutcome` per call.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        runner: Optional[CommandRunner] = None,
        audit: Optional[AuditLogger] = None,
        emitter: Optional[IntegrationEmitter] = None,
    ) -> None:
        self.settings = settings
        self.runner: CommandRunner = runner or BoundedRunner(
            kill_grace_s=settings.kill_grace_s, env=commit_identity_env(settings)
        )
        self.audit = audit or AuditLogger(settings.audit_log_path)
        self.emitter = emitter

    def run(self, payload: FixBuildPayload, *, correlation_id: Optional[str] = None) -> PipelineOutcome:
        cid = correlation_id or self.audit.new_correlation_id()
        redact = SecretRedactor.for_secrets([payload.installation_token])

        def _write(event_type: str, pl: Dict[str, Any]) -> None:
            try:
                self.audit.write(cid, event_type, pl)
            except Exception:  # noqa: BLE001
                return

        repo = f"{payload.repo.owner}/{payload.repo.name}"
        _write(
            "fix_build.received",
            {
                "repo": repo,
                "head_branch": payload.head_branch,
                "head_sha": payload.head_sha,
                "annotations": len(payload.annotations),
            },
        )

        missing = payload.missing_required_fields()
        if missing:
            # Rejected before any workspace or subprocess exists.
            _write("fix_build.rejected", {"missing": missing})
            outcome = PipelineOutcome(
                ok=False,
                kind=FailureKind.validation.value,
                code="invalid-request",
                stage="validate",
                error=MISSING_FIELDS_MESSAGE,
                status_code=status_for(FailureKind.validation),
                correlation_id=cid,
            )
            self._finish(cid, payload, outcome, _write)
            return outcome

        timeline: List[StageRecord] = []
        runner = _RecordingRunner(inner=self.runner, timeline=timeline, write=_write, redact=redact)
        workspaces = WorkspaceManager(
            root=self.settings.workspace_root,
            prefix=self.settings.workspace_prefix,
            on_cleanup_error=lambda path, err: _write("workspace.cleanup_failed", {"path": path, "error": redact(err)}),
        )

        acquired: List[str] = []
        try:
            # scope() releases the workspace on every exit, before the outcome is built below.
            with workspaces.scope() as ws:
                acquired.append(ws.path)
                _write("workspace.acquired", {"path": ws.path})

                sync_repository(
                    ws,
                    owner=payload.repo.owner,
                    name=payload.repo.name,
                    branch=payload.head_branch,
                    sha=payload.head_sha,
                    token=payload.installation_token,
                    runner=runner,
                    settings=self.settings,
                )

                started = time.monotonic()
                ctx_path = materialize_context(ws, payload, file_name=self.settings.context_file_name)
                timeline.append(
                    StageRecord(name="context", outcome="success", duration_s=round(time.monotonic() - started, 3))
                )
                _write("context.written", {"path": ctx_path, "annotations": len(payload.annotations)})

                fix = invoke_fix(ws, fix_instruction(self.settings.context_file_name), runner=runner, settings=self.settings)
                _write(
                    "fix.applied",
                    {
                        "describe_s": fix.describe.duration_s,
                        "apply_s": fix.apply.duration_s,
                        "output_tail": redact(fix.apply.text)[-OUTPUT_TAIL_CHARS:],
                    },
                )

                published = publish_changes(ws, branch=payload.head_branch, runner=runner, settings=self.settings)
                if not published.committed:
                    _write("commit.noop", {"reason": "nothing to commit", "head_sha": published.head_sha})

            outcome = PipelineOutcome(ok=True, commit_sha=published.commit_sha, correlation_id=cid)
        except PipelineFailure as f:
            if f.stage in ("context", "agent_preflight", "workspace"):
                timeline.append(StageRecord(name=f.stage, outcome="error"))
            _write(
                "stage.failed",
                {
                    "stage": f.stage,
                    "kind": f.kind.value,
                    "error": redact(f.message),
                    "output_tail": redact(f.output)[-OUTPUT_TAIL_CHARS:],
                },
            )
            outcome = PipelineOutcome(
                ok=False,
                kind=f.kind.value,
                code=f.code,
                stage=f.stage,
                error=redact(f.message),
                status_code=f.status_code,
                correlation_id=cid,
            )
        except Exception as e:  # noqa: BLE001
            _write("stage.failed", {"stage": "internal", "kind": FailureKind.internal.value, "error": redact(repr(e))})
            outcome = PipelineOutcome(
                ok=False,
                kind=FailureKind.internal.value,
                code="internal-error",
                stage="internal",
                error=redact(f"internal error: {e}"),
                status_code=status_for(FailureKind.internal),
                correlation_id=cid,
            )
        for path in acquired:
            _write("workspace.released", {"path": path})

        outcome.timeline = timeline
        self._finish(cid, payload, outcome, _write)
        return outcome

    def _finish(self, cid: str, payload: FixBuildPayload, outcome: PipelineOutcome, write: AuditWrite) -> None:
        event_type = "fix_build.succeeded" if outcome.ok else "fix_build.failed"
        summary: Dict[str, Any] = {
            "repo": f"{payload.repo.owner}/{payload.repo.name}",
            "head_branch": payload.head_branch,
            "status_code": outcome.status_code,
            **outcome.response_body(),
        }
        write(event_type, summary)

        if self.settings.run_store_enabled:
            try:
                record = build_run_record(correlation_id=cid, request=payload, outcome=outcome)
                persist_run_record(store_dir=self.settings.run_store_dir, correlation_id=cid, payload=record)
            except Exception:  # noqa: BLE001
                pass

        if self.emitter is not None:
            try:
                self.emitter.emit(event_type=event_type, correlation_id=cid, payload=summary)
            except Exception:  # noqa: BLE001
                pass
