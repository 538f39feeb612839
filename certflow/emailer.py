import json
import logging
import sys
from typing import Mapping

import requests

logger = logging.getLogger("certflow.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


def classify_status(status: int | None) -> tuple[str, bool]:
    """Map an HTTP status to ``(reason, retryable)``."""

    if status in (400, 422):
        return "bad_template_variables", False
    if status in (401, 403):
        return "auth_failure", False
    if status == 404:
        return "bad_identifiers", False
    if status is not None and status >= 500:
        return "server_error", True
    return "rejected", False


_REASON_DETAIL = {
    "bad_template_variables": "template variables rejected; check the email template fields",
    "auth_failure": "public key rejected; check the service credentials",
    "bad_identifiers": "service or template id not found",
}


class TemplatedTransport:
    """Client for a hosted templated-email API (EmailJS style)."""

    def __init__(
        self,
        api_url: str,
        service_id: str,
        template_id: str,
        public_key: str,
        timeout: float = 15,
        session: requests.Session | None = None,
    ):
        self.api_url = api_url
        self.service_id = service_id
        self.template_id = template_id
        self.public_key = public_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def payload(self, template_params: Mapping[str, str]) -> dict:
        return {
            "service_id": self.service_id,
            "template_id": self.template_id,
            "user_id": self.public_key,
            "template_params": dict(template_params),
        }

    def send(self, template_params: Mapping[str, str]) -> dict:
        to_email = template_params.get("to_email", "")
        try:
            response = self.session.post(
                self.api_url,
                json=self.payload(template_params),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logger.info("[MAIL-OUT] mode=automated to=%s result=timeout", to_email)
            return {"ok": False, "status": None, "detail": str(e), "reason": "timeout", "retryable": True}
        except requests.RequestException as e:
            logger.info("[MAIL-OUT] mode=automated to=%s result=%s", to_email, e)
            return {"ok": False, "status": None, "detail": str(e), "reason": "network", "retryable": True}

        if 200 <= response.status_code < 300:
            logger.info("[MAIL-OUT] mode=automated to=%s status=%s result=sent", to_email, response.status_code)
            return {"ok": True, "status": response.status_code, "detail": "sent", "reason": None, "retryable": False}

        reason, retryable = classify_status(response.status_code)
        body = (response.text or "").strip()
        detail = _REASON_DETAIL.get(reason) or body or f"HTTP {response.status_code}"
        logger.info(
            "[MAIL-OUT] mode=automated to=%s status=%s reason=%s body=%s",
            to_email,
            response.status_code,
            reason,
            json.dumps(body[:200]),
        )
        return {
            "ok": False,
            "status": response.status_code,
            "detail": detail,
            "reason": reason,
            "retryable": retryable,
        }
