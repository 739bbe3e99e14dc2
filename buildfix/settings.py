from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BUILDFIX_", extra="ignore")

    # Source control host used for the token-authenticated clone URL:
    #   https://x-access-token:<token>@<git_host>/<owner>/<name>.git
    git_host: str = "github.com"

    # Shallow clone depth. Fixed on purpose: if the failing sha sits deeper than this
    # below the branch tip, `git reset --hard` fails and the request reports sync-failed.
    clone_depth: int = 50

    # Per-command deadlines (seconds)
    clone_timeout_s: float = 900.0
    git_step_timeout_s: float = 30.0  # checkout / reset / add / commit
    rev_parse_timeout_s: float = 10.0
    push_timeout_s: float = 60.0

    # Fixing agent (plandex CLI). Both phases (tell + build) share the same deadline,
    # sized for agent reasoning plus running the failing build/test.
    agent_bin: str = "plandex"
    agent_timeout_s: float = 900.0

    commit_message: str = "fix: resolve failing test from CI"
    # Identity for the fix commit. Unset means git falls back to the server's own git config.
    git_author_name: str | None = None
    git_author_email: str | None = None
    context_file_name: str = "BUILD_FAILURE_CONTEXT.md"

    # Workspaces: one disposable temp dir per request.
    workspace_root: str | None = None  # defaults to the system temp dir
    workspace_prefix: str = "buildfix-fix-build-"

    # After a deadline kill, how long to wait for the pipe reader to drain.
    kill_grace_s: float = 5.0

    audit_log_path: str = "var/audit/buildfix_audit.jsonl"

    # Redacted per-request run records (stage timeline + outcome).
    run_store_enabled: bool = True
    run_store_dir: str = "var/runs"

    # -------- Integrations (outcome notifications) --------
    # If set, outcome events (JSON) are POSTed to each URL (fan-out).
    # Example:
    #   BUILDFIX_INTEGRATION_WEBHOOK_URLS_JSON='["https://n8n.example/webhook/buildfix"]'
    integration_webhook_urls_json: str | None = None
    # Optional: restrict which audit event_types are emitted (defaults to terminal events).
    integration_emit_event_types_json: str | None = None
