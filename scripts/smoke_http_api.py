"""
Manual smoke runner for PolicyOS Django adapter endpoints.

Usage:
    python scripts/smoke_http_api.py
    python scripts/smoke_http_api.py --base-url http://127.0.0.1:8000
"""

from __future__ import annotations

import argparse
import json
from urllib import error, request


DEV_MERCHANT_ID = "m_demo"
DEV_USER_ID = "u_demo"


def _call(
    *,
    method: str,
    url: str,
    body: dict | None = None,
) -> tuple[int, dict]:
    encoded = None
    req_headers = {}
    if body is not None:
        encoded = json.dumps(body).encode("utf-8")
        req_headers["Content-Type"] = "application/json"

    req = request.Request(url=url, method=method, headers=req_headers, data=encoded)
    try:
        with request.urlopen(req) as response:
            status = response.status
            payload = json.loads(response.read().decode("utf-8"))
            return status, payload
    except error.HTTPError as exc:
        payload = json.loads(exc.read().decode("utf-8"))
        return exc.code, payload


def _print_case(label: str, status: int, payload: dict) -> None:
    print(f"\n[{label}] status={status}")
    print(json.dumps(payload, indent=2, sort_keys=True))


def run(base_url: str) -> None:
    api = base_url.rstrip("/") + "/v1/policyos"

    status, payload = _call(method="GET", url=f"{api}/plugins")
    _print_case("plugins", status, payload)

    status, payload = _call(method="GET", url=f"{api}/ai/status")
    _print_case("ai-status", status, payload)

    status, payload = _call(
        method="POST",
        url=f"{api}/decision/evaluate",
        body={"merchant_id": "m_missing", "event": "WEATHER_CHANGE", "user_id": DEV_USER_ID},
    )
    _print_case("unknown-merchant", status, payload)

    status, payload = _call(
        method="POST",
        url=f"{api}/decision/evaluate",
        body={
            "merchant_id": DEV_MERCHANT_ID,
            "event": "WEATHER_CHANGE",
            "user_id": DEV_USER_ID,
            "event_id": "evt_smoke_1",
            "payload": {"weather": "RAIN"},
        },
    )
    _print_case("evaluate-rain", status, payload)

    decision_id = (payload.get("data") or {}).get("decision_id")
    if decision_id:
        status, payload = _call(
            method="GET",
            url=f"{api}/decisions/explain?decision_id={decision_id}",
        )
        _print_case("explain", status, payload)


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--base-url",
        default="http://127.0.0.1:8000",
        help="Server base URL.",
    )
    args = parser.parse_args()
    run(args.base_url)


if __name__ == "__main__":
    main()
