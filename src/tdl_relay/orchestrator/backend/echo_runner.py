"""Local stand-in for tdl.sh used by runner integration tests.

Emits the lines listed in TDL_RELAY_ECHO_LINES (separated by `||`), sleeping
TDL_RELAY_ECHO_DELAY seconds between them, then sleeps TDL_RELAY_ECHO_HANG seconds and
exits with TDL_RELAY_ECHO_EXIT. `{target}` and `{token}` in a line are substituted.
"""

from __future__ import annotations

import argparse
import os
import sys
import time


def main(argv: list[str] | None = None) -> int:
    """Run one scripted forwarding session."""

    parser = argparse.ArgumentParser()
    parser.add_argument("target")
    parser.add_argument("lock_token")
    args = parser.parse_args(argv)

    raw_lines = os.getenv("TDL_RELAY_ECHO_LINES", "[STATUS] forwarded {target}")
    delay = float(os.getenv("TDL_RELAY_ECHO_DELAY", "0"))
    hang = float(os.getenv("TDL_RELAY_ECHO_HANG", "0"))
    exit_code = int(os.getenv("TDL_RELAY_ECHO_EXIT", "0"))

    for index, line in enumerate(raw_lines.split("||")):
        if index and delay:
            time.sleep(delay)
        print(line.format(target=args.target, token=args.lock_token), flush=True)
    if hang:
        time.sleep(hang)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
