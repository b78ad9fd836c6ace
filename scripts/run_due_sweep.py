#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import time
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _load_dotenv(path: Path) -> None:
    if not path.is_file():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        parsed = value.strip()
        if parsed and (parsed[0] == parsed[-1]) and parsed[0] in {'"', "'"}:
            parsed = parsed[1:-1]
        os.environ[key] = parsed


def _resolve_api_base_url(explicit_value: str | None) -> str:
    if explicit_value:
        candidate = explicit_value.strip()
    else:
        candidate = os.getenv("RECOVERY_API_BASE_URL", "").strip() or "http://localhost:8000"
    if candidate.endswith("/api/v1/recovery"):
        return candidate
    return f"{candidate.rstrip('/')}/api/v1/recovery"


def _post_run_due(base_url: str, *, timeout_seconds: int) -> dict[str, Any]:
    request = urllib.request.Request(
        f"{base_url}/jobs/run-due",
        data=b"{}",
        headers={"Accept": "application/json", "Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"POST jobs/run-due failed with {exc.code}: {detail}") from exc


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Trigger the failed-payment recovery sweep on a fixed cadence.")
    parser.add_argument(
        "--api-base-url",
        default=None,
        help=(
            "Backend base URL. Accepts either host root (e.g. http://localhost:8000) "
            "or full API prefix (e.g. http://localhost:8000/api/v1/recovery)."
        ),
    )
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=int(os.getenv("RECOVERY_SWEEP_INTERVAL_SECONDS", "60")),
        help="Seconds between sweeps (default: RECOVERY_SWEEP_INTERVAL_SECONDS or 60).",
    )
    parser.add_argument("--timeout-seconds", type=int, default=30)
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    return parser.parse_args()


def main() -> int:
    root_dir = Path(__file__).resolve().parents[1]
    _load_dotenv(root_dir / ".env")
    args = parse_args()

    if args.interval_seconds < 1:
        raise SystemExit("--interval-seconds must be at least 1")

    api_base_url = _resolve_api_base_url(args.api_base_url)
    while True:
        started = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        try:
            report = _post_run_due(api_base_url, timeout_seconds=args.timeout_seconds)
        except (RuntimeError, urllib.error.URLError) as exc:
            print(f"[{started}] sweep failed: {exc}")
            if args.once:
                return 1
        else:
            print(
                f"[{started}] processed={report.get('processed')} advanced={report.get('advanced')} "
                f"expired={report.get('expired')} failed={report.get('failed')} skipped={report.get('skipped')}"
            )
        if args.once:
            return 0
        time.sleep(args.interval_seconds)


if __name__ == "__main__":
    raise SystemExit(main())
