from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="skyreg status CLI")
    p.add_argument("--api", default="http://127.0.0.1:8471", help="status API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("health", help="Watcher health")
    sub.add_parser("registrations", help="Services currently kept alive")

    s_ev = sub.add_parser("events", help="Show journal events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--key", help="Only events for this service key")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    try:
        if args.cmd == "health":
            r = requests.get(f"{base}/health", timeout=10)
        elif args.cmd == "registrations":
            r = requests.get(f"{base}/registrations", timeout=10)
        elif args.cmd == "events":
            params = {"limit": args.limit}
            if args.key:
                params["key"] = args.key
            r = requests.get(f"{base}/events", params=params, timeout=10)
        else:
            return 2
    except requests.exceptions.ConnectionError:
        print(f"Cannot reach skyreg status API at {base} (is --status-port set?)", file=sys.stderr)
        return 1

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
