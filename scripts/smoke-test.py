#!/usr/bin/env python3
"""
Smoke test for zkpaste staging/production deployments.

This script is intentionally a deploy guardrail:
- Fast (a few seconds typical)
- Deterministic where possible
- Actionable failures (step name, HTTP status/body preview)

Flow (default):
1. Health check
2. Paste creation (PoW + POST /pastes, view_limit=2)
3. First read (ciphertext round trip, views_remaining=1)
4. Wrong-token delete is refused
5. Delete with the real token
6. Deleted paste reads as not found

Usage:
    ./scripts/smoke-test.py https://staging.example.com
    ./scripts/smoke-test.py https://staging.example.com --health-only
"""

import argparse
import base64
import hashlib
import json
import random
import secrets
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen


class ApiError(RuntimeError):
    def __init__(self, status_code: int, body: str):
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


PASTE_LIFETIME_SECONDS = 600
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIES = 2
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
# Used when surfacing API error bodies (text) for debugging without log spam.
MAX_ERROR_BODY_CHARS = 10_000
# Used when surfacing raw HTTP bodies (bytes) as a preview in error messages.
BODY_PREVIEW_BYTES = 200
MAX_BACKOFF_SECONDS = 4.0


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def _preview_bytes(value: bytes, limit: int = BODY_PREVIEW_BYTES) -> bytes:
    if len(value) <= limit:
        return value
    return value[:limit]


def _decode_limited(value: bytes, max_chars: int = MAX_ERROR_BODY_CHARS) -> str:
    decoded = value.decode("utf-8", errors="replace")
    if len(decoded) <= max_chars:
        return decoded
    return decoded[:max_chars] + "…"


def _is_retryable_status(status_code: int) -> bool:
    # 429 is not retried: the write throttle is what we'd be hammering
    return status_code in {408, 425, 502, 503, 504, 522, 524}


@dataclass
class HttpClient:
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    retries: int = DEFAULT_RETRIES
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        timeout_seconds: float | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        effective_timeout = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        req_headers = headers or {}

        last_error: Exception | None = None
        max_attempts = max(1, self.retries + 1)
        for attempt in range(1, max_attempts + 1):
            try:
                request = Request(url, data=body, headers=req_headers, method=method)
                try:
                    with urlopen(request, timeout=effective_timeout) as response:
                        return response.getcode(), dict(response.headers.items()), response.read()
                except HTTPError as e:
                    error_body = e.read() if e.fp else b""
                    resp_headers = dict(e.headers.items()) if e.headers else {}
                    if attempt < max_attempts and _is_retryable_status(e.code):
                        last_error = e
                        self._sleep_backoff(attempt)
                        continue
                    return e.code, resp_headers, error_body
            except (URLError, TimeoutError) as e:
                last_error = e
                if attempt < max_attempts:
                    self._sleep_backoff(attempt)
                    continue
                raise RuntimeError(f"Network error after {attempt} attempts: {e}") from e

        raise RuntimeError(f"Unexpected HTTP client failure: {last_error!r}")

    def api(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, Any] | None]:
        """Call an API endpoint and return (status, parsed JSON body or None)."""
        url = f"{self.base_url}/api/v1{path}"
        req_headers: dict[str, str] = {"Content-Type": "application/json"}

        body_bytes = json.dumps(data).encode() if data is not None else None
        status, _, body = self.request(method, url, headers=req_headers, body=body_bytes)
        if not body:
            return status, None
        try:
            return status, json.loads(body.decode())
        except json.JSONDecodeError as e:
            raise RuntimeError(
                f"Invalid JSON response from {method} {path} ({status}): "
                f"preview={_preview_bytes(body)!r}"
            ) from e

    def api_json(
        self,
        method: str,
        path: str,
        *,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        status, payload = self.api(method, path, data=data)
        if status < 200 or status >= 300:
            raise ApiError(status, _decode_limited(json.dumps(payload).encode()))
        return payload or {}

    def get(
        self,
        url: str,
        *,
        timeout_seconds: float | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        return self.request("GET", url, timeout_seconds=timeout_seconds)

    def _sleep_backoff(self, attempt: int) -> None:
        base = self.retry_backoff_seconds * (2 ** (attempt - 1))
        jitter = random.random() * self.retry_backoff_seconds
        time.sleep(min(MAX_BACKOFF_SECONDS, base + jitter))


def b64url(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode()


def wait_for_health(client: HttpClient, max_attempts: int = 30, delay: float = 2.0) -> bool:
    """Wait for /health to return healthy status."""
    url = f"{client.base_url}/health"

    for attempt in range(1, max_attempts + 1):
        try:
            status, _, body = client.get(url, timeout_seconds=10.0)
            if status == 200:
                data = json.loads(body.decode())
                if data.get("status") == "healthy":
                    log(f"Health check passed (attempt {attempt})")
                    return True
        except (json.JSONDecodeError, RuntimeError):
            pass

        if attempt < max_attempts:
            time.sleep(delay)

    return False


def solve_pow(token: str, difficulty: int) -> int:
    """
    Solve proof-of-work challenge.

    Finds nonce where SHA256("token:nonce") has 'difficulty' leading zero bits.
    """
    target = 2 ** (256 - difficulty)

    nonce = 0
    start_time = time.time()

    while True:
        hash_bytes = hashlib.sha256(f"{token}:{nonce}".encode()).digest()

        if int.from_bytes(hash_bytes, "big") < target:
            elapsed = max(time.time() - start_time, 1e-6)
            log(f"PoW solved: nonce={nonce} ({elapsed:.2f}s, {nonce/elapsed:.0f} H/s)")
            return nonce

        nonce += 1

        if nonce % 1_000_000 == 0:
            elapsed = time.time() - start_time
            log(f"PoW progress: {nonce:,} attempts ({nonce/elapsed:.0f} H/s)")


@dataclass
class SmokeContext:
    client: HttpClient
    max_health_attempts: int

    paste_id: str | None = None
    deletion_token: str | None = None
    ciphertext: bytes | None = None

    def require_paste(self) -> tuple[str, str]:
        if not self.paste_id or not self.deletion_token:
            raise RuntimeError("Missing paste_id/deletion_token (step ordering bug)")
        return self.paste_id, self.deletion_token


@dataclass(frozen=True)
class Step:
    name: str
    run: Callable[[SmokeContext], None]


@dataclass(frozen=True)
class StepResult:
    name: str
    status: str  # passed|failed
    seconds: float
    detail: str | None = None


def _print_summary(results: list[StepResult], total_seconds: float) -> None:
    log("Summary:")
    for result in results:
        suffix = f" - {result.detail}" if result.detail else ""
        log(f"  {result.status.upper():7} {result.name} ({result.seconds:.2f}s){suffix}")
    log(f"Total: {total_seconds:.2f}s")


def run_steps(ctx: SmokeContext, steps: list[Step]) -> bool:
    results: list[StepResult] = []
    overall_start = time.time()

    for step in steps:
        log(f"STEP: {step.name}")
        start = time.time()
        try:
            step.run(ctx)
        except Exception as e:
            elapsed = time.time() - start
            results.append(StepResult(step.name, "failed", elapsed, str(e)))
            _print_summary(results, time.time() - overall_start)
            return False

        elapsed = time.time() - start
        results.append(StepResult(step.name, "passed", elapsed))
        log(f"OK: {step.name} ({elapsed:.2f}s)")

    _print_summary(results, time.time() - overall_start)
    return True


def step_health(ctx: SmokeContext) -> None:
    log(f"Checking health: {ctx.client.base_url}/health")
    if not wait_for_health(ctx.client, max_attempts=ctx.max_health_attempts):
        raise RuntimeError("Health check failed")


def step_create_paste(ctx: SmokeContext) -> None:
    ciphertext = b"smoke-test-" + secrets.token_bytes(21)
    payload: dict[str, Any] = {
        "ciphertext": b64url(ciphertext),
        "iv": b64url(secrets.token_bytes(12)),
        "expire_at": int(time.time()) + PASTE_LIFETIME_SECONDS,
        "view_limit": 2,
    }

    status, challenge = ctx.client.api("GET", "/pow")
    if status == 200 and challenge:
        log(f"Solving PoW (difficulty={challenge['difficulty']})")
        payload["pow_solution"] = {
            "token": challenge["token"],
            "nonce": solve_pow(challenge["token"], challenge["difficulty"]),
        }
    elif status == 204:
        log("PoW disabled on this deployment")
    else:
        raise ApiError(status, json.dumps(challenge))

    created = ctx.client.api_json("POST", "/pastes", data=payload)
    ctx.paste_id = created["id"]
    ctx.deletion_token = created["deletion_token"]
    ctx.ciphertext = ciphertext
    log(f"Created paste (id length={len(ctx.paste_id)})")


def step_first_read(ctx: SmokeContext) -> None:
    paste_id, _ = ctx.require_paste()
    data = ctx.client.api_json("GET", f"/pastes/{quote(paste_id)}")

    if data["ciphertext"] != b64url(ctx.ciphertext or b""):
        raise RuntimeError("Ciphertext round trip mismatch")
    if data["views_remaining"] != 1:
        raise RuntimeError(f"Expected views_remaining=1, got {data['views_remaining']!r}")


def step_wrong_token_refused(ctx: SmokeContext) -> None:
    paste_id, _ = ctx.require_paste()
    status, body = ctx.client.api("DELETE", f"/pastes/{quote(paste_id)}?token=not-the-token")
    if status != 403:
        raise ApiError(status, json.dumps(body))


def step_delete(ctx: SmokeContext) -> None:
    paste_id, deletion_token = ctx.require_paste()
    status, body = ctx.client.api(
        "DELETE", f"/pastes/{quote(paste_id)}?token={quote(deletion_token)}"
    )
    if status != 204:
        raise ApiError(status, json.dumps(body))


def step_gone(ctx: SmokeContext) -> None:
    paste_id, _ = ctx.require_paste()
    status, body = ctx.client.api("GET", f"/pastes/{quote(paste_id)}")
    if status != 404 or body != {"error": "not_found"}:
        raise ApiError(status, json.dumps(body))


def main() -> int:
    parser = argparse.ArgumentParser(description="zkpaste smoke test")
    parser.add_argument("base_url", help="Base URL (e.g., https://staging.example.com)")
    parser.add_argument(
        "--health-only",
        action="store_true",
        help="Only run health check, skip full flow",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help=f"HTTP timeout seconds (default: {DEFAULT_TIMEOUT_SECONDS:g})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DEFAULT_RETRIES,
        help=f"Retries for transient failures (default: {DEFAULT_RETRIES})",
    )
    parser.add_argument(
        "--max-health-attempts",
        type=int,
        default=30,
        help="Max health check attempts (default: 30)",
    )
    args = parser.parse_args()

    try:
        base_url = args.base_url.rstrip("/")
        client = HttpClient(base_url=base_url, timeout_seconds=args.timeout, retries=args.retries)
        ctx = SmokeContext(client=client, max_health_attempts=args.max_health_attempts)

        steps: list[Step] = [Step("health", step_health)]
        if args.health_only:
            log("Health-only mode: skipping full flow")
        else:
            steps.extend(
                [
                    Step("create paste", step_create_paste),
                    Step("first read", step_first_read),
                    Step("wrong token refused", step_wrong_token_refused),
                    Step("delete", step_delete),
                    Step("deleted paste is gone", step_gone),
                ]
            )

        ok = run_steps(ctx, steps)
        return 0 if ok else 1
    except Exception as e:
        log(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
