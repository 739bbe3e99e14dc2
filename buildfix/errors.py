from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    validation = "validation"
    environment = "environment"
    sync_failure = "sync-failure"
    context_failure = "context-failure"
    fix_failure = "fix-failure"
    publish_failure = "publish-failure"
    internal = "internal"


_STATUS_BY_KIND = {
    FailureKind.validation: 400,
    FailureKind.environment: 501,
}

_CODE_BY_KIND = {
    FailureKind.validation: "invalid-request",
    FailureKind.environment: "tool-unavailable",
    FailureKind.sync_failure: "sync-failed",
    FailureKind.context_failure: "context-write-failed",
    FailureKind.fix_failure: "fix-failed",
    FailureKind.publish_failure: "publish-failed",
    FailureKind.internal: "internal-error",
}


def status_for(kind: FailureKind) -> int:
    return _STATUS_BY_KIND.get(kind, 500)


class PipelineFailure(Exception):
    """
    Raised by a stage to abort the pipeline.

    `stage` names the step that failed (clone, checkout, plandex_build, push, ...);
    `output` carries captured subprocess output for the audit trail. Neither is
    redacted here: the orchestrator redacts before anything leaves the process.
    """

    def __init__(
        self,
        kind: FailureKind,
        stage: str,
        message: str,
        *,
        output: str = "",
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.stage = stage
        self.message = message
        self.output = output
        self._code = code

    @property
    def code(self) -> str:
        if self._code:
            return self._code
        if self.kind == FailureKind.publish_failure and self.stage == "push":
            return "push-failed"
        return _CODE_BY_KIND[self.kind]

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"
