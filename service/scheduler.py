# service/scheduler.py
from __future__ import annotations

import logging
import os
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from datetime import tzinfo as _dt_tzinfo
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # apscheduler.triggers.base.BaseTrigger
    module: str
    kwargs: dict[str, Any]
    send_email: bool | None
    timeout_sec: int | None
    misfire_grace_time: int | None
    description: str | None
    email_to: list[str] | None = None
    email_cc: list[str] | None = None
    email_bcc: list[str] | None = None
    subject: str | None = None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """A small façade around APScheduler so the CLI can manage lifecycle cleanly."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # in-flight harvest finishes; nothing new starts
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """Block until stopped (or timeout). True if stopped before timeout."""
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load configuration, build an APScheduler instance, add jobs, and start.

    Every job shares one worker thread and runs with max_instances=1 and
    coalesce=True: harvests never overlap, and a backlog of missed fire
    times collapses into a single run. Each job reads and rewrites its own
    ledger, so two runs against the same file must not interleave.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _resolve_timezone(cfg)

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(1)},
        jobstores={"default": MemoryJobStore()},
    )

    for raw in cfg.get("jobs", []):
        try:
            spec = _make_job_spec(raw, tz=tz)
        except ValueError:
            LOG.exception("Skipping job due to config error: %r", raw)
            continue
        _add_job(scheduler, spec)

    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


# ---- Helpers ----------------------------------------------------------------


def _preview_trigger(trigger, tz, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Next `count` fire times, seeding previous_fire_time = now = `start` and
    stepping 1µs past each hit so lookups keep moving forward.
    """
    now = start or datetime.now(tz=tz)
    prev = now
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def _resolve_timezone(cfg: dict[str, Any]):
    """APScheduler 3.x wants a pytz zone: config 'timezone', then env TZ, then UTC."""
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC


def _make_job_spec(raw: dict[str, Any], tz) -> JobSpec:
    """Convert a normalized config job into a JobSpec with a built trigger."""
    module = raw.get("module")
    if not module:
        raise ValueError("Missing required key: module")
    jid = str(raw.get("id") or raw.get("name") or module)

    trigger = _build_trigger(raw.get("trigger", raw), tz.zone if hasattr(tz, "zone") else tz)

    return JobSpec(
        id=jid,
        trigger=trigger,
        module=module,
        kwargs=dict(raw.get("kwargs") or {}),
        send_email=raw.get("send_email"),
        timeout_sec=_int_or(raw.get("timeout_sec"), None),
        misfire_grace_time=_int_or(raw.get("misfire_grace_time"), None),
        description=raw.get("description"),
        email_to=raw.get("email_to"),
        email_cc=raw.get("email_cc"),
        email_bcc=raw.get("email_bcc"),
        subject=raw.get("subject"),
    )


def _tz(z: Any) -> _dt_tzinfo | None:
    if not z:
        return None
    if isinstance(z, _dt_tzinfo):
        return z
    return ZoneInfo(str(z))


def _parse_hhmm(s: str) -> tuple[int, int, int]:
    parts = s.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
        ss = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as err:
        raise ValueError(f"daily_time must contain integers: {s!r}") from err
    time(hh, mm, ss)  # range check
    return hh, mm, ss


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from a job (or its nested "trigger" block).

    Supported shapes:
      {"cron": "0 7 * * mon-fri"}                       # crontab, scheduler tz
      {"cron": {minute?, hour?, day?, day_of_week?, month?, second?, timezone?, jitter?}}
      {"daily_time": "07:30"}
      {"daily_time": {"time": "HH:MM" | ["HH:MM", ...], "day_of_week"?, "timezone"?}}

    A block-level 'timezone' wins over the scheduler tz.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    default_tz = _tz(tz)
    present = [k for k in ("cron", "daily_time") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'cron','daily_time'} must be provided")

    if present[0] == "cron":
        cron_spec = trig_def["cron"]
        if isinstance(cron_spec, str):
            fields = cron_spec.strip().split()
            if len(fields) != 5:
                raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {cron_spec!r}")
            return CronTrigger.from_crontab(cron_spec, timezone=default_tz)
        if not isinstance(cron_spec, dict):
            raise ValueError("cron must be a crontab string or an object")
        allowed = {"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "jitter"}
        unknown = set(cron_spec) - allowed
        if unknown:
            raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")
        return CronTrigger(
            second=cron_spec.get("second", 0),
            minute=cron_spec.get("minute", 0),
            hour=cron_spec.get("hour", 0),
            day=cron_spec.get("day"),
            day_of_week=cron_spec.get("day_of_week"),
            month=cron_spec.get("month"),
            jitter=cron_spec.get("jitter"),
            timezone=_tz(cron_spec.get("timezone")) or default_tz,
        )

    dtdef = trig_def["daily_time"]
    if isinstance(dtdef, str):
        dtdef = {"time": dtdef}
    if not isinstance(dtdef, dict):
        raise ValueError("daily_time must be 'HH:MM' or an object")
    unknown = set(dtdef) - {"time", "day_of_week", "timezone"}
    if unknown:
        raise ValueError(f"daily_time has unknown field(s): {sorted(unknown)}")

    times = dtdef.get("time")
    if times is None:
        raise ValueError("daily_time requires 'time'")
    if isinstance(times, str):
        times = [times]
    tzinfo = _tz(dtdef.get("timezone")) or default_tz

    per_time = [
        CronTrigger(second=s, minute=m, hour=h, day_of_week=dtdef.get("day_of_week"), timezone=tzinfo)
        for h, m, s in sorted({_parse_hhmm(str(t)) for t in times})
    ]
    return per_time[0] if len(per_time) == 1 else OrTrigger(per_time)


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    """
    Register the job with a wrapper that runs the module through
    runner.run_module_once() and records one scheduler activity line.
    Failures are logged and swallowed here so the next fire time still runs.
    """

    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        try:
            runner.run_module_once(
                spec.module,
                kwargs=dict(spec.kwargs or {}),
                send_email=spec.send_email if spec.send_email is not None else True,
                timeout_sec=spec.timeout_sec,
                trigger_type="scheduled",
                job_context=_build_job_context(spec),
                email_to=spec.email_to,
                cc=spec.email_cc,
                bcc=spec.email_bcc,
                subject=spec.subject,
            )
        except Exception:
            LOG.exception("Job[%s] raised an exception.", spec.id)
            _write_activity(spec, status="error", duration_s=_time.monotonic() - started)
            return
        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished in %.3fs", spec.id, duration)
        _write_activity(spec, status="ok", duration_s=duration)

    if os.getenv("SCHEDULER_PREVIEW") == "1":
        preview = _preview_trigger(spec.trigger, scheduler.timezone, count=int(os.getenv("SCHEDULER_PREVIEW_COUNT", "6")))
        print(f"PREVIEW[{spec.id}]:", ", ".join(t.isoformat() for t in preview) if preview else "(none)")

    scheduler.add_job(
        func=_job_wrapper,
        trigger=spec.trigger,
        id=spec.id,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=spec.misfire_grace_time,
        replace_existing=True,
    )
    job = scheduler.get_job(spec.id)
    nrt = getattr(job, "next_run_time", None) if job else None
    LOG.info("Registered job[%s] (module=%s) next_run_time=%s", spec.id, spec.module, nrt.isoformat() if nrt else None)


def _write_activity(spec: JobSpec, status: str, duration_s: float) -> None:
    try:
        write_activity_log({
            "ts": datetime.now(timezone.utc).isoformat(),
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "description": spec.description,
            },
        })
    except OSError:
        LOG.debug("write_activity_log failed for job[%s]", spec.id, exc_info=True)


def _int_or(v: Any, default: int | None) -> int | None:
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default


def _build_job_context(spec: JobSpec) -> dict[str, Any]:
    return {
        "job_id": spec.id,
        "module": spec.module,
        "now_iso": datetime.now(timezone.utc).isoformat(),
    }
