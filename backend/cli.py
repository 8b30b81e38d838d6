from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from typing import List, Optional, TextIO

import config
from db import ResultStore, ResultStoreError
from runner import ScanCoordinator
from scanner import Status

logger = logging.getLogger("tls_checker.cli")


def build_coordinator(db_path: Optional[str] = None) -> ScanCoordinator:
    return ScanCoordinator(
        ResultStore(db_path or config.DB_PATH),
        logger=logger,
        options=config.ScanOptions.from_env(),
    )


def cmd_scan(coordinator: ScanCoordinator, directories: List[str], batch_size: int, out: TextIO) -> int:
    if directories:
        out.write(f"Looking for URLs in {', '.join(directories)}...\n")
    total = coordinator.start_scan(directories or None)
    if total == 0:
        out.write("No new hosts to scan.\n")
        return 0

    out.write(f"Found {total} hosts to check.\n")
    offset = 0
    while True:
        batch = coordinator.process_batch(batch_size, offset)
        out.write(f"  {batch['processed']}/{total} checked\n")
        if batch["remaining"] == 0:
            break
        offset += batch_size

    res = coordinator.get_results()
    out.write("Scan complete!\n")
    out.write(f"Passing domains: {res['passing']}\n")
    out.write(f"Failing domains: {res['failing']}\n")
    if res["failing_keys"]:
        out.write("The following domains are not compatible with TLS 1.2 or 1.3:\n")
        for key in res["failing_keys"]:
            out.write(f"- {key}\n")
    return 0


def cmd_reset(coordinator: ScanCoordinator, out: TextIO) -> int:
    coordinator.reset()
    out.write("TLS scan data reset.\n")
    return 0


def cmd_report(coordinator: ScanCoordinator, fmt: str, out: TextIO) -> int:
    res = coordinator.get_results()
    if not res["passing"] and not res["failing"]:
        out.write("No scan data found.\n")
        return 0

    rows = [{"url": k, "status": Status.PASSING.value} for k in res["passing_keys"]]
    rows += [{"url": k, "status": Status.FAILING.value} for k in res["failing_keys"]]

    if fmt == "json":
        out.write(json.dumps(rows, indent=2) + "\n")
    elif fmt == "csv":
        writer = csv.DictWriter(out, fieldnames=["url", "status"])
        writer.writeheader()
        writer.writerows(rows)
    else:
        width = max(len("URL"), max(len(r["url"]) for r in rows))
        out.write(f"{'URL'.ljust(width)}  Status\n")
        out.write(f"{'-' * width}  -------\n")
        for r in rows:
            out.write(f"{r['url'].ljust(width)}  {r['status']}\n")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="tls-checker",
        description="Find outbound HTTP(S) hosts in a codebase and check TLS 1.2/1.3 support.",
    )
    p.add_argument("--db", help="Result database path (default: $TLS_CHECKER_DB).")
    sub = p.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Run a TLS 1.2/1.3 compatibility scan.")
    scan.add_argument("--directory", "-d", default="",
                      help="Comma-separated list of directories to scan instead of the defaults.")
    scan.add_argument("--batch-size", type=int, default=config.BATCH_SIZE,
                      help="Hosts probed in parallel per batch.")

    sub.add_parser("reset", help="Reset the TLS scan results.")

    report = sub.add_parser("report", help="Print the stored TLS scan results.")
    report.add_argument("--format", "-f", choices=["table", "json", "csv"], default="table")

    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None, out: TextIO = sys.stdout) -> int:
    args = parse_args(argv)
    config.configure_logging()
    coordinator = build_coordinator(args.db)

    try:
        if args.command == "scan":
            return cmd_scan(coordinator, config.split_directories(args.directory), max(1, args.batch_size), out)
        if args.command == "reset":
            return cmd_reset(coordinator, out)
        return cmd_report(coordinator, args.format, out)
    except ResultStoreError as e:
        sys.stderr.write(f"Result store error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
