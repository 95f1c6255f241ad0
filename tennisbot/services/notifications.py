"""Operator notifications via the Telegram Bot API."""
import logging
import os
from datetime import datetime

import requests
from jinja2 import Environment, FileSystemLoader

logger = logging.getLogger(__name__)

TELEGRAM_SEND_MESSAGE_URL = "https://api.telegram.org/bot{token}/sendMessage"

# Setup Jinja2 environment
template_dir = os.path.join(os.path.dirname(os.path.dirname(__file__)), 'templates')
jinja_env = Environment(loader=FileSystemLoader(template_dir))


def format_session(booking) -> str:
    start = datetime.combine(booking.session_date, datetime.strptime(booking.session_time, "%H:%M").time())
    return start.strftime('%B %d, %Y at %H:%M')


class OperatorNotifier:
    """Sends best-effort messages to the coach's Telegram chat."""

    def __init__(self, bot_token: str, chat_id: str = None, timeout: float = 10):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "OperatorNotifier":
        return cls(settings.bot_token, settings.coach_chat_id)

    def send_message(self, text: str) -> bool:
        """Send a message to the operator. Never raises; returns delivery success."""
        if not self.chat_id:
            logger.info("No operator chat configured, skipping notification")
            return False
        try:
            response = requests.post(
                TELEGRAM_SEND_MESSAGE_URL.format(token=self.bot_token),
                json={'chat_id': self.chat_id, 'text': text, 'parse_mode': 'Markdown'},
                timeout=self.timeout,
            )
            response.raise_for_status()
            logger.info(f"Operator notification sent to {self.chat_id}")
            return True
        except requests.RequestException as error:
            logger.error(f"Error notifying operator: {error}", exc_info=True)
            return False

    def _render(self, template_name: str, booking) -> str:
        template = jinja_env.get_template(template_name)
        return template.render(booking=booking, session=format_session(booking))

    def notify_booking_created(self, booking) -> bool:
        return self.send_message(self._render('booking_created.txt', booking))

    def notify_booking_cancelled(self, booking) -> bool:
        return self.send_message(self._render('booking_cancelled.txt', booking))
