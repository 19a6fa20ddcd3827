"""PPM threshold alerts and their e-mail delivery."""

from __future__ import annotations

import asyncio
import logging
import os
import smtplib
import ssl
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from email.message import EmailMessage
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)

PPM_UNIT = "ppm"

ThresholdLookup = Callable[[str | None], Awaitable[float | None]]


class Notifier(Protocol):
    async def notify_all(self, title: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        ...


class CooldownStore:
    """Last alert instant per device.

    ``try_acquire`` checks and records under one lock so two concurrent
    evaluations for the same device cannot both fire.
    """

    def __init__(self) -> None:
        self._last_alert: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    async def try_acquire(self, key: str, now: datetime, window: timedelta) -> bool:
        async with self._lock:
            last = self._last_alert.get(key)
            if last is not None and now - last < window:
                return False
            self._last_alert[key] = now
            return True

    def last_alert(self, key: str) -> datetime | None:
        return self._last_alert.get(key)

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._last_alert.clear()
        else:
            self._last_alert.pop(key, None)


@dataclass(frozen=True)
class ThresholdBreach:
    """Information about a breached threshold."""

    serial_number: str | None
    value: float
    threshold: float
    unit: str = PPM_UNIT
    topic: str | None = None
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _format_subject(event: ThresholdBreach) -> str:
    return f"Alert: PPM above threshold on {event.serial_number or 'unknown device'}"


def _format_body(event: ThresholdBreach) -> str:
    parts = [
        f"Device serial: {event.serial_number or 'n/a'}",
        f"Topic: {event.topic}" if event.topic else None,
        f"Value: {event.value} {event.unit}".strip(),
        f"Threshold: {event.threshold} {event.unit}".strip(),
        f"Recorded at: {event.recorded_at.isoformat()}",
    ]
    return "\n".join(filter(None, parts))


class ThresholdEvaluator:
    """Decide whether a concentration warrants an alert and dispatch it."""

    def __init__(
        self,
        threshold_lookup: ThresholdLookup,
        notifier: Notifier,
        cooldown: CooldownStore | None = None,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._threshold_lookup = threshold_lookup
        self._notifier = notifier
        self.cooldown = cooldown if cooldown is not None else CooldownStore()
        self.window = timedelta(seconds=cooldown_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def evaluate(
        self,
        serial_number: str | None,
        value: float | None,
        topic: str | None = None,
    ) -> bool:
        """Return ``True`` when an alert was dispatched."""

        if value is None:
            return False

        try:
            threshold = await self._threshold_lookup(serial_number)
        except Exception:
            logger.exception("Threshold lookup failed; skipping alert evaluation", extra={"serial_number": serial_number})
            return False

        if threshold is None or value <= threshold:
            return False

        now = self._clock()
        if not await self.cooldown.try_acquire(serial_number or "", now, self.window):
            logger.debug(
                "Alert suppressed by cooldown",
                extra={"serial_number": serial_number, "concentration": value, "threshold": threshold},
            )
            return False

        event = ThresholdBreach(
            serial_number=serial_number,
            value=value,
            threshold=threshold,
            topic=topic,
            recorded_at=now,
        )
        logger.warning(
            "PPM threshold exceeded",
            extra={"serial_number": serial_number, "concentration": value, "threshold": threshold},
        )
        try:
            await self._notifier.notify_all(_format_subject(event), _format_body(event), asdict(event))
        except Exception:
            logger.exception(
                "Alert notification failed",
                extra={"serial_number": serial_number, "concentration": value, "threshold": threshold},
            )
            return False
        return True


@dataclass(frozen=True)
class SMTPSettings:
    host: str
    port: int
    use_ssl: bool
    use_starttls: bool
    user: str
    password: str
    from_addr: str
    to_addrs: tuple[str, ...]
    timeout: float
    debug: bool


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_number(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, value, default)
        return default


def _split_addresses(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [addr.strip() for addr in raw.split(",") if addr.strip()]


def load_smtp_settings() -> SMTPSettings:
    """Read the SMTP_* variables; unset or invalid numbers fall back to defaults."""

    use_ssl = _env_bool("SMTP_USE_SSL", False)
    return SMTPSettings(
        host=os.getenv("SMTP_HOST", "localhost"),
        port=_env_number("SMTP_PORT", 465 if use_ssl else 587),
        use_ssl=use_ssl,
        use_starttls=_env_bool("SMTP_USE_STARTTLS", True),
        user=os.getenv("SMTP_USER", ""),
        password=os.getenv("SMTP_PASSWORD", ""),
        from_addr=os.getenv("SMTP_FROM", "los-relay@localhost"),
        to_addrs=tuple(_split_addresses(os.getenv("SMTP_TO", os.getenv("SMTP_TO_ADDR")))),
        timeout=_env_number("SMTP_TIMEOUT", 15),
        debug=_env_bool("SMTP_DEBUG", False),
    )


def get_admin_recipients(settings: SMTPSettings | None = None) -> list[str]:
    """Admin addresses from ADMIN_EMAILS (or ADMIN_EMAIL / SMTP_ADMIN_TO).

    Falls back to the plain SMTP recipients when none are configured.
    """

    admin_raw = (
        os.getenv("ADMIN_EMAILS")
        or os.getenv("ADMIN_EMAIL")
        or os.getenv("SMTP_ADMIN_TO")
    )
    admin_addrs = _split_addresses(admin_raw)
    if admin_addrs:
        return admin_addrs

    if settings is None:
        settings = load_smtp_settings()
    return list(settings.to_addrs)


def _unique_addresses(addresses: Sequence[Any]) -> list[str]:
    unique: list[str] = []
    for addr in addresses:
        if not isinstance(addr, str):
            continue
        trimmed = addr.strip()
        if trimmed and trimmed not in unique:
            unique.append(trimmed)
    return unique


def _open_smtp_connection(settings: SMTPSettings) -> smtplib.SMTP:
    context = ssl.create_default_context()
    if settings.use_ssl:
        server: smtplib.SMTP = smtplib.SMTP_SSL(
            settings.host, settings.port, timeout=settings.timeout, context=context
        )
    else:
        server = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)

    if settings.debug:
        server.set_debuglevel(1)

    server.ehlo()
    if settings.use_starttls and not settings.use_ssl:
        server.starttls(context=context)
        server.ehlo()

    if settings.user and settings.password:
        server.login(settings.user, settings.password)

    return server


class EmailNotifier:
    """Alert delivery over SMTP.

    One e-mail per alert, addressed to the alert's own ``recipients`` (if the
    metadata carries any) followed by the admin recipients. Delivery runs in
    the default executor; every failure is logged, none is raised.
    """

    def __init__(self, settings_loader: Callable[[], SMTPSettings] = load_smtp_settings) -> None:
        self._settings_loader = settings_loader

    async def notify_all(self, title: str, message: str, metadata: Mapping[str, Any] | None = None) -> None:
        try:
            settings = self._settings_loader()
        except Exception:
            logger.exception("Could not load SMTP settings; alert '%s' not sent", title)
            return

        recipients = self.recipients_for(settings, metadata)
        if not recipients:
            logger.warning("No recipients configured for alert '%s'; skipping", title)
            return

        email = self.compose(settings, recipients, title, message)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.deliver, settings, email)

    @staticmethod
    def recipients_for(settings: SMTPSettings, metadata: Mapping[str, Any] | None) -> list[str]:
        extra = (metadata or {}).get("recipients") or []
        if isinstance(extra, str):
            extra = _split_addresses(extra)
        return _unique_addresses([*extra, *get_admin_recipients(settings)])

    @staticmethod
    def compose(settings: SMTPSettings, recipients: Sequence[str], subject: str, body: str) -> EmailMessage:
        email = EmailMessage()
        email["From"] = settings.from_addr
        email["To"] = ", ".join(recipients)
        email["Subject"] = subject
        email.set_content(body)
        return email

    @staticmethod
    def deliver(settings: SMTPSettings, email: EmailMessage) -> bool:
        try:
            server = _open_smtp_connection(settings)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to open SMTP connection to %s:%s", settings.host, settings.port)
            return False

        try:
            server.send_message(email)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send alert '%s'", email["Subject"])
            return False
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                logger.warning("SMTP connection did not close cleanly", exc_info=True)
        return True
