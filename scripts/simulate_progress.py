#!/usr/bin/env python3
"""Demo executor for ProgressGate: writes progress records and a final result."""

from __future__ import annotations

import json
import os
import sys
import time
import uuid
from typing import Any
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, urlopen


def _env(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


class HttpClient:
    def __init__(self, base_url: str, api_key: str | None = None, owner_id: str | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers: dict[str, str] = {"Content-Type": "application/json"}
        if api_key:
            self.headers["Authorization"] = f"Bearer {api_key}"
        if owner_id:
            self.headers["X-Owner-ID"] = owner_id

    def request_json(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
        timeout: float = 10.0,
    ) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        if query:
            query = {k: v for k, v in query.items() if v is not None}
            if query:
                url = f"{url}?{urlencode(query)}"

        data = None
        if payload is not None:
            data = json.dumps(payload, default=str).encode("utf-8")

        req = Request(url, data=data, method=method)
        for key, value in self.headers.items():
            req.add_header(key, value)

        try:
            with urlopen(req, timeout=timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"{method} {url} failed: {exc.code} {exc.reason}: {detail}") from None

        if not raw:
            return {}
        return json.loads(raw.decode("utf-8"))


def _labels(breadth: int, depth: int) -> list[str]:
    labels = ["Starting research"]
    for d in range(1, depth + 1):
        for b in range(1, breadth + 1):
            labels.append(f"Searching query {b} at depth {d}")
    labels.append("Writing final report")
    return labels


def main() -> int:
    base_url = _env("PROGRESSGATE_URL", "http://localhost:8080")
    api_key = _env("PROGRESSGATE_API_KEY")
    owner_id = _env("PROGRESSGATE_OWNER_ID", "owner-demo")
    task_id = _env("PROGRESSGATE_TASK_ID", f"task-{uuid.uuid4().hex[:12]}")
    breadth = int(_env("PROGRESSGATE_BREADTH", "2"))
    depth = int(_env("PROGRESSGATE_DEPTH", "2"))
    delay = float(_env("PROGRESSGATE_STEP_DELAY", "0.5"))
    pollute = _env("PROGRESSGATE_POLLUTE", "false").lower() in ("1", "true", "yes")

    client = HttpClient(base_url, api_key=api_key, owner_id=owner_id)

    print("Checking health...")
    health = client.request_json("GET", "/v1/health")
    if health.get("status") != "healthy":
        raise RuntimeError(f"Unexpected health response: {health}")

    print(f"Tracking task {task_id} (breadth={breadth}, depth={depth})...")
    view = client.request_json(
        "GET",
        f"/v1/tasks/{task_id}/progress",
        query={"breadth": breadth, "depth": depth},
    )
    print(f"  expected_total={view['expected_total']} percentage={view['percentage']}")

    for i, label in enumerate(_labels(breadth, depth)):
        sources = [{"url": f"https://example.org/{task_id}/{i}", "title": label}] if i else []
        client.request_json(
            "POST",
            f"/v1/tasks/{task_id}/progress",
            payload={"label": label, "sources": sources, "owner_id": owner_id},
        )
        if pollute and i == 1:
            client.request_json(
                "POST",
                f"/v1/tasks/{task_id}/progress",
                payload={"label": "Debug Topic injected by executor", "owner_id": owner_id},
            )
        view = client.request_json("GET", f"/v1/tasks/{task_id}/progress")
        print(f"  {label!r}: {view['percentage']}%")
        time.sleep(delay)

    client.request_json(
        "POST",
        f"/v1/tasks/{task_id}/progress",
        payload={"label": "research_done", "owner_id": owner_id},
    )
    view = client.request_json("GET", f"/v1/tasks/{task_id}/progress")
    if not view["is_complete"] or view["percentage"] != 100:
        raise RuntimeError(f"Task not complete after research_done: {view}")
    print(f"Complete: {view['percentage']}%, result_available={view['result_available']}")

    print("Storing final result...")
    client.request_json(
        "POST",
        f"/v1/tasks/{task_id}/results",
        payload={"content": {"summary": f"Demo report for {task_id}"}, "owner_id": owner_id},
    )
    time.sleep(delay)

    availability = client.request_json("GET", f"/v1/tasks/{task_id}/result-availability")
    if not availability.get("available"):
        raise RuntimeError(f"Result not reported available: {availability}")

    result = client.request_json("GET", f"/v1/tasks/{task_id}/result")
    print(f"Result: {result['content']}")

    client.request_json("DELETE", f"/v1/tasks/{task_id}/progress")
    print("Simulation complete: progress reached 100%, result available.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise
