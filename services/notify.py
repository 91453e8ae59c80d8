# services/notify.py
"""
Email collaborator. Delivery itself lives outside this service; anything
implementing Notifier can be handed to registry.init_app(). Both calls return
{"success": bool, "error": str | None} and must not be relied on to raise.
"""

from __future__ import annotations
import logging
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_welcome_email(self, email: str, full_name: str, course_id: str) -> Dict[str, Any]:
        ...

    def send_notification_email(self, details: Dict[str, Any]) -> Dict[str, Any]:
        ...


class LogNotifier:
    """Default notifier: records what would have been sent."""

    def send_welcome_email(self, email: str, full_name: str, course_id: str) -> Dict[str, Any]:
        logger.info("welcome email -> %s (%s) course=%s", email, full_name, course_id)
        return {"success": True, "error": None}

    def send_notification_email(self, details: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("notification email for %s course=%s",
                    details.get("email"), details.get("selected_course"))
        return {"success": True, "error": None}
