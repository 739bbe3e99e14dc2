from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from typing import Any, Dict

from buildfix.models import FixBuildPayload, PipelineOutcome


@dataclass(frozen=True)
class RunRecord:
    correlation_id: str
    payload: Dict[str, Any]
    path: str


def build_run_record(*, correlation_id: str, request: FixBuildPayload, outcome: PipelineOutcome) -> Dict[str, Any]:
    """
    Redaction-safe summary of one request. The installation token is never included;
    `outcome.error` is expected to be redacted already.
    """
    return {
        "schema": "buildfix.run_record.v1",
        "generated_at_unix": time.time(),
        "correlation_id": correlation_id,
        "request": {
            "repo": f"{request.repo.owner}/{request.repo.name}",
            "head_branch": request.head_branch,
            "head_sha": request.head_sha,
            "annotation_count": len(request.annotations),
            "check_run_url": request.check_run_url,
            "workflow_run_url": request.workflow_run_url,
        },
        "timeline": [s.model_dump(mode="json") for s in outcome.timeline],
        "outcome": outcome.model_dump(mode="json", exclude={"timeline"}),
    }


def persist_run_record(*, store_dir: str, correlation_id: str, payload: Dict[str, Any]) -> RunRecord:
    os.makedirs(store_dir, exist_ok=True)
    path = run_record_path(store_dir=store_dir, correlation_id=correlation_id)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=False)
    return RunRecord(correlation_id=correlation_id, payload=payload, path=path)


def run_record_path(*, store_dir: str, correlation_id: str) -> str:
    return os.path.join(store_dir, f"{correlation_id}.run.json")
