# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the APScheduler service loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

run MODULE [--kwargs k=v ...] [--to addr ...] [--no-email] [--print-html]
    - Executes a module ad-hoc via runner.run_module_once(...)
    - MODULE may be a dotted path or a short name under modules/ (listing_watch)
    - Displays a concise success/failure summary

list-jobs
    - Loads config via config_schema.load_config() and prints configured jobs

validate-config
    - Loads/validates config and returns nonzero on error

Exit codes: 0 success, 1 failure, 130 interrupted.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """key=value strings into a dict; JSON-looking values are decoded."""
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k, v = k.strip(), v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _qualify_module(name: str) -> str:
    return name if "." in name else f"modules.{name}"


@contextmanager
def _env_overrides(env: dict[str, str]):
    """Temporarily set environment variables."""
    old: dict[str, str | None] = {}
    try:
        for k, v in env.items():
            old[k] = os.environ.get(k)
            os.environ[k] = v
        yield
    finally:
        for k, v in old.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("ID", "DETAILS")) -> None:
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _describe_job(job: dict[str, Any]) -> str:
    if job.get("description"):
        return str(job["description"])
    container = job.get("trigger", job)
    for key in ("cron", "daily_time"):
        if key in container:
            return f"{job.get('module')} {key}={json.dumps(container[key], default=str)}"
    return json.dumps(job, default=str)


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _load_config_with_optional_path(path: str | None) -> dict[str, Any]:
    return _config_schema.load_config(path) if path else _config_schema.load_config()


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _load_config_with_optional_path(args.config)
        _config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_jobs(args: argparse.Namespace) -> int:
    try:
        cfg = _load_config_with_optional_path(args.config)
    except KeyboardInterrupt:
        return 130
    except _config_schema.ConfigError as e:
        print(f"ERROR: failed to list jobs: {e}", file=sys.stderr)
        return 1
    rows = [(str(j.get("id")), _describe_job(j)) for j in cfg.get("jobs", [])]
    if not rows:
        print("No jobs found in config.")
        return 0
    _print_table(rows, headers=("JOB", "DETAILS"))
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    start_time = time.monotonic()
    module = _qualify_module(args.module)
    kwargs = _parse_kv_pairs(args.kwargs or [])
    email_to = args.to or [a for a in [os.getenv("SMTP_FROM", "").strip()] if a]
    LOG.debug("Run module %s with kwargs=%s", module, kwargs)

    env = {}
    if args.no_email:
        env["SCHEDULED_MODULES_DRY_RUN"] = "1"
        env["SEND_EMAIL"] = "0"

    try:
        with _env_overrides(env):
            html, run_id = _runner.run_module_once(
                module=module,
                kwargs=kwargs,
                email_to=email_to,
                send_email=not args.no_email,
                trigger_type="adhoc",
            )
        L.write_activity_log({
            "ts": _now_iso(),
            "event": "cli_run",
            "run_id": run_id,
            "module": module,
            "trigger_type": "adhoc",
            "emailed": bool(html) and not args.no_email,
            "kwargs": kwargs,
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })

        status_line = "DONE: Module run completed."
        if html:
            status_line = "SUCCESS: HTML returned."
            if args.print_html:
                print("\n----- HTML OUTPUT -----\n")
                print(html)
        print(status_line)
        return 0

    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "module": module,
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - start_time) * 1000),
        })
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler loop until a termination signal is received."""
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})

    stop_event = threading.Event()
    controller: _scheduler.SchedulerController | None = None

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        controller = _scheduler.start(config_path=args.config)
        while not stop_event.is_set():
            time.sleep(0.3)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        return 1
    finally:
        if controller is not None:
            controller.stop()
            controller.join(timeout=10.0)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Listing watch service command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("serve", help="Run the scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Execute a module ad-hoc via runner.run_module_once().")
    sp.add_argument("module", help="Module to run (e.g. listing_watch or modules.listing_watch).")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Keyword arguments for the module (JSON values supported), e.g. profile=lands.",
    )
    sp.add_argument(
        "--to",
        metavar="ADDR",
        nargs="*",
        help="Report recipients (default: SMTP_FROM).",
    )
    sp.add_argument(
        "--no-email",
        action="store_true",
        help="Do everything except actually send emails (dry-run).",
    )
    sp.add_argument(
        "--print-html",
        action="store_true",
        help="If the module returns HTML, print it to stdout.",
    )
    sp.set_defaults(func=cmd_run)

    sp = sub.add_parser("list-jobs", help="Print all jobs from config.")
    sp.set_defaults(func=cmd_list_jobs)

    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
