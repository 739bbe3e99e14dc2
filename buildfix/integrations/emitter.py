from __future__ import annotations

import json
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

DEFAULT_EMIT_EVENT_TYPES = ("fix_build.succeeded", "fix_build.failed")


@dataclass(frozen=True)
class IntegrationEvent:
    schema: str
    emitted_at_unix: float
    event_type: str
    correlation_id: str
    payload: Dict[str, Any]


def _parse_urls(urls_json: str | None) -> List[str]:
    if not urls_json:
        return []
    try:
        raw = json.loads(urls_json)
    except json.JSONDecodeError:
        return []
    if not isinstance(raw, list):
        return []
    return [u.strip() for u in raw if isinstance(u, str) and u.strip()]


def _parse_event_types(types_json: str | None) -> Optional[set[str]]:
    if not types_json:
        return None
    try:
        raw = json.loads(types_json)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, list):
        return None
    out = {t.strip() for t in raw if isinstance(t, str) and t.strip()}
    return out or None


class IntegrationEmitter:
    """
    Best-effort outbound outcome notifications (chat-ops, n8n, ...).
    Non-blocking: a slow or broken webhook must never hold up or fail a fix_build request.
    """

    def __init__(
        self,
        *,
        webhook_urls_json: str | None,
        emit_event_types_json: str | None = None,
        timeout_s: float = 6.0,
        max_queue: int = 500,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._urls = _parse_urls(webhook_urls_json)
        self._allowed_types = _parse_event_types(emit_event_types_json) or set(DEFAULT_EMIT_EVENT_TYPES)
        self._timeout_s = float(timeout_s)
        self._transport = transport
        self._q: "queue.Queue[IntegrationEvent]" = queue.Queue(maxsize=max_queue)
        self._stop = threading.Event()
        self._t: threading.Thread | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._urls)

    def start(self) -> None:
        if self._t is not None or not self._urls:
            return
        self._t = threading.Thread(target=self._run, name="buildfix_integration_emitter", daemon=True)
        self._t.start()

    def stop(self) -> None:
        self._stop.set()

    def drain(self, timeout_s: float = 5.0) -> bool:
        """Wait until queued events are delivered (or dropped). Returns False on timeout."""
        deadline = time.monotonic() + timeout_s
        while self._q.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.02)
        return not self._q.unfinished_tasks

    def _run(self) -> None:
        with httpx.Client(timeout=self._timeout_s, transport=self._transport) as client:
            while not self._stop.is_set():
                try:
                    ev = self._q.get(timeout=0.25)
                except queue.Empty:
                    continue
                try:
                    data = {
                        "schema": ev.schema,
                        "emitted_at_unix": ev.emitted_at_unix,
                        "event_type": ev.event_type,
                        "correlation_id": ev.correlation_id,
                        "payload": ev.payload,
                    }
                    for url in self._urls:
                        try:
                            client.post(url, json=data)
                        except Exception:  # noqa: BLE001
                            # Best-effort: one bad URL (unreachable or unparseable) must not stop the rest.
                            continue
                finally:
                    self._q.task_done()

    def emit(self, *, event_type: str, correlation_id: str, payload: Dict[str, Any]) -> bool:
        """Queue an event. Returns whether it was accepted (filtered, disabled or full queue -> False)."""
        if not self._urls:
            return False
        if event_type not in self._allowed_types:
            return False
        ev = IntegrationEvent(
            schema="buildfix.integration_event.v1",
            emitted_at_unix=time.time(),
            event_type=event_type,
            correlation_id=correlation_id,
            payload=payload or {},
        )
        try:
            self._q.put_nowait(ev)
        except queue.Full:
            return False
        return True
