from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FixBuildRepo(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str = ""
    name: str = ""


class FixBuildAnnotation(BaseModel):
    """
    One check-run annotation. Line numbers are passed through as-is (start <= end is not enforced).
    """

    model_config = ConfigDict(frozen=True)

    path: str = ""
    start_line: int = 0
    end_line: int = 0
    annotation_level: str = ""
    message: str = ""
    title: Optional[str] = None
    raw_details: Optional[str] = None


class FixBuildPayload(BaseModel):
    """
    Webhook body for POST /fix_build.
    Keys are camelCase on the wire; required-field checks happen in `missing_required_fields`
    so a partially filled payload still parses and gets a precise 400.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    repo: FixBuildRepo = Field(default_factory=FixBuildRepo)
    head_branch: str = Field(default="", alias="headBranch")
    head_sha: str = Field(default="", alias="headSha")
    annotations: List[FixBuildAnnotation] = Field(default_factory=list)
    output_summary: str = Field(default="", alias="outputSummary")
    installation_token: str = Field(default="", alias="installationToken", repr=False)
    check_run_url: Optional[str] = Field(default=None, alias="checkRunUrl")
    workflow_run_url: Optional[str] = Field(default=None, alias="workflowRunUrl")

    def missing_required_fields(self) -> List[str]:
        missing: List[str] = []
        if not self.repo.owner:
            missing.append("repo.owner")
        if not self.repo.name:
            missing.append("repo.name")
        if not self.head_branch:
            missing.append("headBranch")
        if not self.head_sha:
            missing.append("headSha")
        if not self.installation_token:
            missing.append("installationToken")
        return missing


class StageRecord(BaseModel):
    name: str
    outcome: str  # success|nonzero-exit|timeout|error
    duration_s: float = 0.0
    exit_code: Optional[int] = None


class PipelineOutcome(BaseModel):
    """
    Terminal result of one fix_build request.
    On success `commit_sha` may be absent (nothing to commit, or rev-parse failed).
    """

    ok: bool
    commit_sha: Optional[str] = None
    kind: Optional[str] = None
    code: Optional[str] = None
    stage: Optional[str] = None
    error: Optional[str] = None
    status_code: int = 200
    correlation_id: Optional[str] = None
    timeline: List[StageRecord] = Field(default_factory=list)

    def response_body(self) -> dict:
        if self.ok:
            body: dict = {"ok": True}
            if self.commit_sha:
                body["commitSha"] = self.commit_sha
            return body
        return {"ok": False, "error": self.error, "code": self.code, "stage": self.stage, "kind": self.kind}
