"""Local deterministic agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import sys
import time


def main(argv: list[str] | None = None) -> int:
    """Echo the prompt back, optionally misbehaving on request."""

    parser = argparse.ArgumentParser()
    parser.add_argument("prompt")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stderr", default="")
    parser.add_argument("--silent", action="store_true")
    args = parser.parse_args(argv)

    if args.sleep > 0:
        time.sleep(args.sleep)
    if args.stderr:
        sys.stderr.write(args.stderr + "\n")
    if not args.silent and args.exit_code == 0:
        sys.stdout.write(f"echo: {args.prompt}\n")
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
