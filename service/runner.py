# service/runner.py
from __future__ import annotations

import importlib
import json
import logging
import os
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from html import escape
from typing import Any

from service.emailer import EmailSendError, send_html
from service.logging_utils import write_activity_log, write_error_log

log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _wrap_html(title: str, body_inner_html: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head><meta charset="UTF-8"><title>{escape(title)}</title></head>
  <body style="font-family:Arial,sans-serif;line-height:1.5;margin:0;padding:8px">
    {body_inner_html}
  </body>
</html>"""


def _coerce_scalar(s: str) -> Any:
    low = s.lower()
    if low in ("true", "yes", "on"):
        return True
    if low in ("false", "no", "off"):
        return False
    if s.isdigit() or (s.startswith("-") and s[1:].isdigit()):
        return int(s)
    try:
        return float(s)
    except ValueError:
        return s


def _normalize_kwargs_types(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Normalize job kwargs right before module.run(**kwargs):

      • Keys ending with "_env": the string value is an ENV VAR NAME; replace it
        with os.getenv(<name>, "") and keep the key as-is.
      • Other string values: parse JSON-looking strings ({...} / [...]), else
        coerce common bool/number forms.
    """
    if not kwargs:
        return {}

    normalized: dict[str, object] = {}
    for k, v in kwargs.items():
        if isinstance(k, str) and k.endswith("_env") and isinstance(v, str):
            normalized[k] = os.getenv(v.strip(), "")
            continue
        if not isinstance(v, str):
            normalized[k] = v
            continue
        s = v.strip()
        if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
            try:
                normalized[k] = json.loads(s)
                continue
            except json.JSONDecodeError:
                pass
        normalized[k] = _coerce_scalar(s)
    return normalized


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import module and return its `run` callable."""
    mod = importlib.import_module(module_path)
    if not hasattr(mod, "run") or not callable(mod.run):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return mod.run  # type: ignore[no-any-return]


@dataclass
class RunResult:
    ok: bool
    message: str
    html: str | None = None
    meta: dict[str, Any] | None = None
    subject: str | None = None
    attachments: list[str] = field(default_factory=list)


def _coerce_result(value: Any) -> RunResult:
    """
    Normalize module return into a RunResult.

    Acceptable shapes:
      - None          -> no output
      - str           -> inner HTML
      - (str, dict)   -> inner HTML + meta (may include 'message', 'subject', 'attachments')
    """
    if value is None:
        return RunResult(ok=True, message="OK")
    if isinstance(value, str):
        return RunResult(ok=True, message="OK", html=value)
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str) and isinstance(value[1], dict):
        meta = value[1]
        return RunResult(
            ok=True,
            message=str(meta.get("message", "OK")),
            html=value[0],
            meta=meta,
            subject=meta.get("subject"),
            attachments=[str(p) for p in (meta.get("attachments") or [])],
        )
    raise TypeError("Module return must be one of: None, str, or (str, dict)")


def _emit_activity(record: dict[str, Any]) -> None:
    try:
        write_activity_log(record)
    except Exception as e:
        log.warning("write_activity_log failed: %s", e)


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module_once(
    module: str,
    kwargs: dict[str, object] | None = None,
    email_to: list[str] | None = None,
    subject: str | None = None,
    send_email: bool | None = True,
    trigger_type: str = "scheduled",
    cc: list[str] | None = None,
    bcc: list[str] | None = None,
    job_context: dict[str, object] | None = None,
    timeout_sec: int | None = None,
) -> tuple[str | None, str]:
    """
    Execute a module's run(**kwargs) once, then email its report if any.

    Returns:
        (html_or_none, run_id)
    Raises:
        Exceptions from module execution, and EmailSendError when the report
        could not be delivered (whatever the module persisted stays persisted).
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
    }
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    kw = _normalize_kwargs_types(kwargs)
    run_callable = _resolve_callable(module)

    exc: BaseException | None = None
    t0 = datetime.now()
    try:
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner") as pool:
            fut = pool.submit(lambda: run_callable(**kw))
            value = fut.result(timeout=timeout_sec) if timeout_sec else fut.result()
        result = _coerce_result(value)
    except FutureTimeout:
        exc = TimeoutError(f"Module run timed out after {timeout_sec}s")
        result = RunResult(ok=False, message=str(exc), meta={"timeout_sec": timeout_sec})
    except BaseException as e:
        exc = e
        result = RunResult(ok=False, message=str(e), meta={"exception_type": type(e).__name__})
    duration_ms = int((datetime.now() - t0).total_seconds() * 1000)

    # Hard override: dry-run disables sending no matter what.
    dry_run = str(os.getenv("SCHEDULED_MODULES_DRY_RUN", "")).strip().lower() in {"1", "true", "yes", "on"}
    env_send_default = str(os.getenv("SEND_EMAIL", "1")).strip().lower() in {"1", "true", "yes", "on"}
    effective_send = send_email if send_email is not None else env_send_default
    if dry_run:
        effective_send = False

    emailed = False
    email_message_id: str | None = None
    if exc is None and result.html and effective_send:
        subj = result.subject or subject or f"{module} run"
        try:
            email_message_id = send_html(
                subject=subj,
                html=_wrap_html(subj, result.html),
                to=email_to or [],
                cc=cc,
                bcc=bcc,
                attachments=result.attachments,
            )
            emailed = True
        except EmailSendError as e:
            log.error("Email send failed: %s", e)
            write_error_log({"ts": now_iso(), "where": "runner.email", "run_id": run_id, "error": repr(e)})
            exc = e

    _emit_activity({
        "ts": now_iso(),
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "ok": result.ok and exc is None,
        "message": result.message,
        "duration_ms": duration_ms,
        "emailed": emailed,
        "email_message_id": email_message_id,
        "email_to": email_to or [],
        "cc": cc or [],
        "bcc": bcc or [],
        "context": context,
        "kwargs": kw,
        "meta": result.meta or {},
    })

    if exc:
        raise exc
    return result.html, run_id
