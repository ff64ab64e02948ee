"""Module entry point for `python -m moe_overlap`."""

import sys

import run_perf


if __name__ == "__main__":
    raise SystemExit(run_perf.main(sys.argv[1:]))
