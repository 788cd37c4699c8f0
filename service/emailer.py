# service/emailer.py
from __future__ import annotations

import mimetypes
import os
import smtplib
import ssl
import time
from collections.abc import Iterable
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

# Not every platform's mime table knows the ledger's type.
mimetypes.add_type("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", ".xlsx")

# ---- Errors -----------------------------------------------------------------


class EmailSendError(RuntimeError):
    """Raised when an email cannot be delivered."""


# ---- Env / Settings ----------------------------------------------------------


def _getenv_any(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v != "":
            return v
    return default


def _resolve_smtp_settings() -> dict:
    """
    Resolve SMTP settings from env.

      - SMTP_HOST / SMTP_PORT (default smtp.gmail.com:587)
      - SMTP_USERNAME / SMTP_PASSWORD
      - SMTP_USE_SSL = "true" | "false"
      - SMTP_STARTTLS = "true" | "false" | "auto" (default)
      - SMTP_FROM / SMTP_FROM_NAME
    """
    host = _getenv_any("SMTP_HOST", default="smtp.gmail.com")
    port = int(_getenv_any("SMTP_PORT", default="587") or 587)

    username = _getenv_any("SMTP_USERNAME")
    password = _getenv_any("SMTP_PASSWORD")

    use_ssl = (_getenv_any("SMTP_USE_SSL", default="false") or "false").strip().lower() == "true"
    starttls = (_getenv_any("SMTP_STARTTLS", default="auto") or "auto").strip().lower()
    if use_ssl:
        starttls = "false"

    return {
        "host": host,
        "port": port,
        "username": username,
        "password": password,
        "use_ssl": use_ssl,
        "starttls": starttls,  # "true" | "false" | "auto"
        "default_from_addr": _getenv_any("SMTP_FROM", default=username or ""),
        "default_from_name": _getenv_any("SMTP_FROM_NAME", default="Listing Watch"),
    }


# ---- Helpers ----------------------------------------------------------------


def _as_list(values: Iterable[str] | str | None) -> list[str]:
    """None / "a, b" / ["a", "b"] -> ["a", "b"] (blanks dropped)."""
    if not values:
        return []
    if isinstance(values, str):
        values = values.split(",")
    return [v for v in (str(s).strip() for s in values) if v]


def _should_starttls(port: int, starttls_setting: str) -> bool:
    if starttls_setting == "true":
        return True
    if starttls_setting == "false":
        return False
    return port not in (25, 2525)


def _attach_files(msg: EmailMessage, paths: list[str]) -> None:
    for path in paths:
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise EmailSendError(f"Cannot read attachment {path}: {e}") from e
        ctype, _ = mimetypes.guess_type(path)
        maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
        msg.add_attachment(data, maintype=maintype, subtype=subtype, filename=os.path.basename(path))


def _build_message(
    *,
    subject: str,
    html: str,
    to: list[str],
    cc: list[str],
    bcc: list[str],
    from_name: str | None,
    from_addr: str,
    attachments: list[str],
) -> EmailMessage:
    if not subject or not subject.strip():
        raise EmailSendError("Missing subject.")
    if not html or not html.strip():
        raise EmailSendError("Missing HTML body.")
    if not to and not cc and not bcc:
        raise EmailSendError("No recipients (to/cc/bcc).")

    msg = EmailMessage()
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    # bcc stays out of the headers; it only goes into the envelope
    if to:
        msg["To"] = ", ".join(to)
    if cc:
        msg["Cc"] = ", ".join(cc)
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()

    msg.set_content("This message requires an HTML-capable client.")
    msg.add_alternative(html, subtype="html", charset="utf-8")
    if attachments:
        _attach_files(msg, attachments)
    return msg


def _send_via_smtp(msg: EmailMessage, *, rcpt_to: list[str], settings: dict) -> None:
    host = settings["host"]
    port = settings["port"]
    username = settings["username"]
    password = settings["password"]
    use_ssl = settings["use_ssl"]

    if not (host and username and password):
        raise EmailSendError("Missing SMTP credentials or host. Expected SMTP_USERNAME/SMTP_PASSWORD and SMTP_HOST.")

    context = ssl.create_default_context()
    try:
        server = smtplib.SMTP_SSL(host, port, context=context) if use_ssl else smtplib.SMTP(host, port)
        with server:
            server.ehlo()
            if not use_ssl and _should_starttls(port, settings["starttls"]):
                server.starttls(context=context)
                server.ehlo()
            server.login(username, password)
            server.send_message(msg, to_addrs=rcpt_to)
    except smtplib.SMTPResponseException as e:
        raise EmailSendError(f"SMTP send failed ({e.smtp_code}): {e}") from e
    except Exception as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e


# ---- Public API --------------------------------------------------------------


def send_html(
    *,
    subject: str,
    html: str,
    to: list[str] | str | None,
    cc: list[str] | str | None = None,
    bcc: list[str] | str | None = None,
    attachments: list[str] | None = None,
) -> str:
    """
    Send an HTML email, optionally with file attachments.

    Returns:
        message_id (str): RFC-822 Message-ID generated by the sender.

    Raises:
        EmailSendError on any failure (connection/auth/SMTP/validation/attachment).
    """
    settings = _resolve_smtp_settings()

    to_l = _as_list(to)
    cc_l = _as_list(cc)
    bcc_l = _as_list(bcc)
    from_addr = (settings["default_from_addr"] or "").strip()
    if not from_addr:
        raise EmailSendError("No from address resolved. Set SMTP_FROM or SMTP_USERNAME.")

    msg = _build_message(
        subject=subject,
        html=html,
        to=to_l,
        cc=cc_l,
        bcc=bcc_l,
        from_name=(settings["default_from_name"] or "").strip() or None,
        from_addr=from_addr,
        attachments=list(attachments or []),
    )

    rcpt_to = [*to_l, *cc_l, *bcc_l]
    for attempt in range(3):
        try:
            _send_via_smtp(msg, rcpt_to=rcpt_to, settings=settings)
            return str(msg["Message-ID"])
        except EmailSendError as e:  # noqa: PERF203
            # Only transient 4xx replies are worth another try.
            if "(4" not in str(e):
                raise
            time.sleep(2**attempt)  # 1s, 2s, 4s
    raise EmailSendError("Permanent send failure after retries")
