"""Certificate distribution by email.

The mode is chosen once from a :class:`DistributionConfig`: with usable
credentials every recipient gets one templated-API call; without them the
recipients get ``mailto:`` drafts handed to a local mail handler.
"""

from __future__ import annotations

import webbrowser
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from flask import render_template

from ..emailer import TemplatedTransport, logger
from ..shared.mail_utils import build_mailto, is_valid_address, normalize_recipients
from ..shared.names import greeting_name
from ..shared.qr import build_verification_url
from ..shared.tokens import short_certificate_id
from .batch import ProgressChannel, progress_percent
from .errors import TransportError

AUTOMATED = "automated"
FALLBACK = "fallback"

PLACEHOLDER_VALUES = frozenset(
    {
        "your_service_id",
        "your_template_id",
        "your_public_key",
        "your_service_id_here",
        "your_template_id_here",
        "your_public_key_here",
    }
)

DEFAULT_API_URL = "https://api.emailjs.com/api/v1.0/email/send"


def _usable(value: str | None) -> bool:
    cleaned = (value or "").strip()
    return bool(cleaned) and cleaned.lower() not in PLACEHOLDER_VALUES


@dataclass(frozen=True)
class DistributionConfig:
    service_id: str = ""
    template_id: str = ""
    public_key: str = ""
    api_url: str = DEFAULT_API_URL
    from_name: str = "Certificates Team"
    reply_to: str = ""
    base_url: str = ""
    timeout: float = 10

    @classmethod
    def from_mapping(cls, config: Mapping) -> "DistributionConfig":
        return cls(
            service_id=config.get("EMAIL_SERVICE_ID") or "",
            template_id=config.get("EMAIL_TEMPLATE_ID") or "",
            public_key=config.get("EMAIL_PUBLIC_KEY") or "",
            api_url=config.get("EMAIL_API_URL") or DEFAULT_API_URL,
            from_name=config.get("EMAIL_FROM_NAME") or "Certificates Team",
            reply_to=config.get("EMAIL_REPLY_TO") or "",
            base_url=config.get("VERIFY_BASE_URL") or "",
            timeout=float(config.get("EMAIL_TIMEOUT") or 10),
        )

    def is_automated(self) -> bool:
        return all(
            _usable(value)
            for value in (self.service_id, self.template_id, self.public_key)
        )


@dataclass(frozen=True)
class Recipient:
    name: str
    email: str
    token: str

    @classmethod
    def coerce(cls, value) -> "Recipient":
        if isinstance(value, cls):
            return value
        return cls(name=value.name, email=value.email, token=value.token)


@dataclass
class DistributionReport:
    mode: str
    success: int = 0
    failed: int = 0
    drafts: list[str] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def summary(self) -> str:
        if self.mode == FALLBACK:
            return f"fallback: drafts={len(self.drafts)} handed_off={self.success} failed={self.failed}"
        return f"automated: sent={self.success} failed={self.failed}"

    def as_dict(self) -> dict:
        return {
            "mode": self.mode,
            "success": self.success,
            "failed": self.failed,
            "drafts": list(self.drafts),
            "failures": list(self.failures),
            "summary": self.summary(),
        }


def subject_for(event_title: str) -> str:
    return f"Your Certificate - {event_title}"


def template_params(
    recipient: Recipient, event_title: str, config: DistributionConfig
) -> dict[str, str]:
    return {
        "to_name": greeting_name(recipient.name, recipient.email),
        "to_email": recipient.email,
        "from_name": config.from_name,
        "subject": subject_for(event_title),
        "event_name": event_title,
        "certificate_id": short_certificate_id(recipient.token),
        "verification_url": build_verification_url(config.base_url, recipient.token),
        "reply_to": config.reply_to,
    }


class AutomatedDistributor:
    mode = AUTOMATED

    def __init__(self, config: DistributionConfig, transport: TemplatedTransport | None = None):
        self.config = config
        self.transport = transport or TemplatedTransport(
            api_url=config.api_url,
            service_id=config.service_id,
            template_id=config.template_id,
            public_key=config.public_key,
            timeout=config.timeout,
        )

    def distribute(
        self,
        recipients: Iterable,
        event_title: str,
        *,
        channel: ProgressChannel | None = None,
    ) -> DistributionReport:
        report = DistributionReport(mode=self.mode)
        items = [Recipient.coerce(value) for value in recipients]
        total = len(items)
        for index, recipient in enumerate(items, start=1):
            if not is_valid_address(recipient.email):
                logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", recipient.email)
                report.failed += 1
                report.failures.append(
                    TransportError(
                        "invalid email address", reason="invalid_address"
                    ).as_dict(recipient.email)
                )
            else:
                result = self.transport.send(
                    template_params(recipient, event_title, self.config)
                )
                if result.get("ok"):
                    report.success += 1
                else:
                    report.failed += 1
                    report.failures.append(
                        TransportError.from_result(result).as_dict(recipient.email)
                    )
            if channel is not None:
                channel.publish(progress_percent(index, total))
        if channel is not None:
            channel.close()
        logger.info(
            "[MAIL-BATCH] mode=%s event=\"%s\" sent=%s failed=%s",
            self.mode,
            event_title,
            report.success,
            report.failed,
        )
        return report


MailHandler = Callable[[str], object]


def open_in_mail_client(uri: str) -> bool:
    return webbrowser.open(uri)


class FallbackDistributor:
    """Hands ``mailto:`` drafts to a local handler; never reports delivery."""

    mode = FALLBACK

    def __init__(
        self,
        config: DistributionConfig,
        handler: MailHandler | None = open_in_mail_client,
        bulk: bool = False,
    ):
        self.config = config
        self.handler = handler
        self.bulk = bulk

    def build_drafts(self, recipients: Sequence[Recipient], event_title: str) -> list[str]:
        """Drafts for recipients whose addresses are already known to be valid."""
        subject = subject_for(event_title)
        if self.bulk:
            addresses, _ = normalize_recipients([r.email for r in recipients])
            if not addresses:
                return []
            body = render_template(
                "email/certificate_bulk.txt",
                event_name=event_title,
                from_name=self.config.from_name,
                entries=[template_params(r, event_title, self.config) for r in recipients],
            )
            return [build_mailto(None, subject, body, bcc=addresses)]

        drafts = []
        for recipient in recipients:
            body = render_template(
                "email/certificate.txt",
                **template_params(recipient, event_title, self.config),
            )
            drafts.append(build_mailto(recipient.email, subject, body))
        return drafts

    def distribute(
        self,
        recipients: Iterable,
        event_title: str,
        *,
        channel: ProgressChannel | None = None,
    ) -> DistributionReport:
        report = DistributionReport(mode=self.mode)
        valid = []
        for recipient in (Recipient.coerce(value) for value in recipients):
            if is_valid_address(recipient.email):
                valid.append(recipient)
                continue
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", recipient.email)
            report.failed += 1
            report.failures.append(
                TransportError(
                    "invalid email address", reason="invalid_address"
                ).as_dict(recipient.email)
            )
        report.drafts = self.build_drafts(valid, event_title)
        total = len(report.drafts)
        for index, draft in enumerate(report.drafts, start=1):
            if self.handler is not None:
                try:
                    self.handler(draft)
                except Exception as e:
                    report.failed += 1
                    report.failures.append({"reason": "handler_error", "detail": str(e)})
                    logger.info("[MAIL-DRAFT] mode=%s result=%s", self.mode, e)
                else:
                    report.success += 1
            if channel is not None:
                channel.publish(progress_percent(index, total))
        if channel is not None:
            channel.close()
        logger.info(
            "[MAIL-DRAFT] mode=%s event=\"%s\" drafts=%s bulk=%s",
            self.mode,
            event_title,
            len(report.drafts),
            self.bulk,
        )
        return report


def build_distributor(
    config: DistributionConfig,
    *,
    transport: TemplatedTransport | None = None,
    handler: MailHandler | None = open_in_mail_client,
    bulk: bool = False,
) -> AutomatedDistributor | FallbackDistributor:
    if config.is_automated():
        return AutomatedDistributor(config, transport=transport)
    return FallbackDistributor(config, handler=handler, bulk=bulk)
