"""Local deterministic CLI tool for executor integration tests."""

from __future__ import annotations

import argparse
import json
import os
import sys
import time


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt back as JSON, optionally misbehaving on request."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--stderr", default="")
    parser.add_argument("--total-tokens", type=int, default=None)
    parser.add_argument("--sandbox", default=None)
    parser.add_argument("--plain", action="store_true")
    parser.add_argument("prompt")
    args = parser.parse_args(argv)

    if args.sleep:
        time.sleep(args.sleep)
    if args.stderr:
        print(args.stderr, file=sys.stderr)
    if args.total_tokens is not None:
        print(f"tokens used: {args.total_tokens}", file=sys.stderr)

    if args.plain:
        print(args.prompt)
    else:
        payload = {
            "prompt": args.prompt,
            "cwd": os.getcwd(),
            "sandbox": args.sandbox,
        }
        print(f"echo_agent result:\n{json.dumps(payload)}")
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
