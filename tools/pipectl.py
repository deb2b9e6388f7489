#!/usr/bin/env python3
# ============================================================================
# PIPECTL - OPERATOR CLI
# ============================================================================
# EPOCH: 1 - STAGE ORCHESTRATION
# STATUS: Tool - Operate the stage orchestrator over its HTTP API
# PURPOSE: Submit, inspect, follow, cancel and reclaim DAG instances
# CREATED: 17 OCT 2026
# ============================================================================
"""
Operator CLI for the stage orchestrator.

Usage:
    # Submit a loaded DAG (or a YAML file) and wait for every task to settle
    python tools/pipectl.py submit trading-system --param symbol=BTC-USD --wait
    python tools/pipectl.py submit workflows/trading_pipeline.yaml

    # Inspect
    python tools/pipectl.py status                      # all instances
    python tools/pipectl.py status trading-system-3f9a1
    python tools/pipectl.py logs trading-system-3f9a1 market-streamer --follow
    python tools/pipectl.py watch --interval 2

    # Stop and clean up
    python tools/pipectl.py cancel trading-system-3f9a1
    python tools/pipectl.py reclaim trading-system-3f9a1

    # Fire a trigger route
    python tools/pipectl.py trigger /algo/order-book '{"symbol": "BTC-USD"}'

Exit codes:
    0  success
    1  rejected, failed, or orchestrator unreachable
    2  usage error

Environment:
    ORCHESTRATOR_URL (default: http://localhost:8000)
"""

import argparse
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

API_PREFIX = "/api/v1"
TERMINAL_STATUSES = ("succeeded", "failed", "cancelled")


class PipectlError(Exception):
    """A command failed; the message is printed and the exit code is 1."""


# ============================================================================
# HTTP
# ============================================================================

def _request(client: httpx.Client, method: str, path: str, **kwargs) -> httpx.Response:
    try:
        response = client.request(method, path, **kwargs)
    except httpx.HTTPError as e:
        raise PipectlError(f"Orchestrator unreachable at {client.base_url}: {e}")

    if response.status_code >= 400:
        try:
            detail = response.json().get("detail", response.text)
        except ValueError:
            detail = response.text
        raise PipectlError(f"{method} {path} -> {response.status_code}: {detail}")
    return response


def _parse_params(params_json: Optional[str], pairs: List[str]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if params_json:
        try:
            params = json.loads(params_json)
        except json.JSONDecodeError as e:
            raise PipectlError(f"Invalid JSON params: {e}")
        if not isinstance(params, dict):
            raise PipectlError("--params must be a JSON object")
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise PipectlError(f"Invalid --param '{pair}', expected key=value")
        params[key] = value
    return params


# ============================================================================
# RENDERING
# ============================================================================

def format_instance(instance: Dict[str, Any]) -> str:
    lines = [
        f"{instance['instance_id']}  dag={instance['dag_id']}  status={instance['status']}",
    ]
    for task in instance.get("tasks", []):
        reason = f"  ({task['reason']})" if task.get("reason") else ""
        lines.append(f"  {task['name']:<24} {task['state']:<24} {task['address']}{reason}")
    return "\n".join(lines)


# ============================================================================
# COMMANDS
# ============================================================================

def wait_for_instance(
    client: httpx.Client,
    instance_id: str,
    timeout: float,
    interval: float = 1.0,
) -> Dict[str, Any]:
    """Poll until the instance is terminal or the timeout passes."""
    deadline = time.monotonic() + timeout
    while True:
        instance = _request(client, "GET", f"{API_PREFIX}/instances/{instance_id}").json()
        if instance["status"] in TERMINAL_STATUSES:
            return instance
        if time.monotonic() >= deadline:
            raise PipectlError(f"Timeout after {timeout}s; {instance_id} still {instance['status']}")
        time.sleep(interval)


def cmd_submit(client: httpx.Client, args) -> int:
    params = _parse_params(args.params, args.param)
    body: Dict[str, Any] = {"params": params}

    source = Path(args.dag)
    if source.suffix in (".yaml", ".yml") and source.exists():
        body["definition_yaml"] = source.read_text()
    else:
        body["dag_id"] = args.dag

    result = _request(client, "POST", f"{API_PREFIX}/instances", json=body).json()
    instance_id = result["instance_id"]
    print(f"Submitted {instance_id}")

    if not args.wait:
        return 0

    instance = wait_for_instance(client, instance_id, args.timeout, args.interval)
    print(format_instance(instance))
    return 0 if instance["status"] == "succeeded" else 1


def cmd_status(client: httpx.Client, args) -> int:
    if args.instance_id:
        instance = _request(client, "GET", f"{API_PREFIX}/instances/{args.instance_id}").json()
        print(format_instance(instance))
    else:
        print(_request(client, "GET", f"{API_PREFIX}/status/text").text)
    return 0


def cmd_logs(client: httpx.Client, args) -> int:
    path = f"{API_PREFIX}/instances/{args.instance_id}/tasks/{args.task}/logs"
    cursor = args.since
    while True:
        data = _request(client, "GET", path, params={"since": cursor}).json()
        for line in data["lines"]:
            print(line)
        cursor = data["cursor"]
        if not args.follow:
            return 0

        instance = _request(client, "GET", f"{API_PREFIX}/instances/{args.instance_id}").json()
        if instance["status"] in TERMINAL_STATUSES:
            # One last read for anything written before the stage exited
            data = _request(client, "GET", path, params={"since": cursor}).json()
            for line in data["lines"]:
                print(line)
            return 0
        time.sleep(args.interval)


def cmd_cancel(client: httpx.Client, args) -> int:
    instance = _request(
        client, "POST", f"{API_PREFIX}/instances/{args.instance_id}/cancel",
        json={"reason": args.reason},
    ).json()
    print(format_instance(instance))
    return 0


def cmd_reclaim(client: httpx.Client, args) -> int:
    _request(client, "DELETE", f"{API_PREFIX}/instances/{args.instance_id}")
    print(f"Reclaimed {args.instance_id}")
    return 0


def cmd_watch(client: httpx.Client, args) -> int:
    params = [("instance_id", i) for i in args.instance_ids]
    cycles = 0
    while args.count is None or cycles < args.count:
        text = _request(client, "GET", f"{API_PREFIX}/status/text", params=params).text
        if args.clear:
            print("\033[2J\033[H", end="")
        print(text)
        cycles += 1
        if args.count is None or cycles < args.count:
            time.sleep(args.interval)
    return 0


def cmd_trigger(client: httpx.Client, args) -> int:
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        raise PipectlError(f"Invalid JSON payload: {e}")

    path = args.path if args.path.startswith("/") else f"/{args.path}"
    result = _request(client, args.method, path, json=payload).json()
    print(f"Queued event {result['event_id']} ({result['source']}/{result['name']})")
    return 0


# ============================================================================
# ENTRY POINT
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipectl",
        description="Operate the stage orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url", "-u",
        default=os.environ.get("ORCHESTRATOR_URL", "http://localhost:8000"),
        help="Orchestrator base URL (default: $ORCHESTRATOR_URL or http://localhost:8000)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("submit", help="Start a DAG instance")
    p.add_argument("dag", help="Loaded dag_id, or path to a DAG YAML file")
    p.add_argument("--params", help="JSON object of parameters")
    p.add_argument("--param", action="append", default=[], metavar="KEY=VALUE",
                   help="Single parameter (repeatable, overrides --params)")
    p.add_argument("--wait", "-w", action="store_true", help="Wait until the instance settles")
    p.add_argument("--timeout", "-t", type=float, default=300.0, help="Wait timeout in seconds")
    p.add_argument("--interval", type=float, default=1.0, help="Poll interval in seconds")
    p.set_defaults(func=cmd_submit)

    p = sub.add_parser("status", help="Show one instance, or the status table")
    p.add_argument("instance_id", nargs="?")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("logs", help="Show captured stage output")
    p.add_argument("instance_id")
    p.add_argument("task")
    p.add_argument("--follow", "-f", action="store_true", help="Keep reading until the instance ends")
    p.add_argument("--since", type=int, default=0, help="Start cursor")
    p.add_argument("--interval", type=float, default=1.0, help="Follow poll interval in seconds")
    p.set_defaults(func=cmd_logs)

    p = sub.add_parser("cancel", help="Cancel an instance")
    p.add_argument("instance_id")
    p.add_argument("--reason", default="cancelled")
    p.set_defaults(func=cmd_cancel)

    p = sub.add_parser("reclaim", help="Forget a finished instance")
    p.add_argument("instance_id")
    p.set_defaults(func=cmd_reclaim)

    p = sub.add_parser("watch", help="Refresh the status table on an interval")
    p.add_argument("instance_ids", nargs="*", help="Only these instances")
    p.add_argument("--interval", "-n", type=float, default=5.0)
    p.add_argument("--count", "-c", type=int, default=None, help="Stop after N refreshes")
    p.add_argument("--no-clear", dest="clear", action="store_false", help="Do not clear the screen")
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("trigger", help="Send an event to a trigger route")
    p.add_argument("path", help="Route path, e.g. /algo/order-book")
    p.add_argument("payload", nargs="?", default="{}", help="JSON body")
    p.add_argument("--method", "-X", default="POST", choices=["POST", "PUT"])
    p.set_defaults(func=cmd_trigger)

    return parser


def main(argv: Optional[List[str]] = None, client: Optional[httpx.Client] = None) -> int:
    args = build_parser().parse_args(argv)

    owns_client = client is None
    if owns_client:
        client = httpx.Client(base_url=args.url, timeout=10.0)
    try:
        return args.func(client, args)
    except PipectlError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0
    finally:
        if owns_client:
            client.close()


if __name__ == "__main__":
    sys.exit(main())
