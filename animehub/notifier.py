# animehub/notifier.py
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import List, Tuple

import requests

from animehub.models import EmailMessage

logger = logging.getLogger(__name__)

EMAIL_NOTIFICATIONS_TOPIC = "email-notifications-exchange"


class Notifier(ABC):
    """
    Publishes messages to a topic. Delivery is best effort: callers catch and log
    whatever publish raises and carry on.
    """

    @abstractmethod
    def publish(self, topic: str, message: EmailMessage) -> None:
        ...


class LogNotifier(Notifier):
    """Used when no notification endpoint is configured."""

    def publish(self, topic: str, message: EmailMessage) -> None:
        logger.info("[%s] to=%s subject=%s", topic, message.recipient, message.subject)


class WebhookNotifier(Notifier):
    def __init__(self, url: str, timeout: float = 5.0, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def publish(self, topic: str, message: EmailMessage) -> None:
        resp = self.session.post(self.url, json={"topic": topic, "message": asdict(message)}, timeout=self.timeout)
        resp.raise_for_status()
        logger.debug("Published %s message to %s (status %s)", topic, self.url, resp.status_code)


class InMemoryNotifier(Notifier):
    """Keeps published messages in a list (tests)."""

    def __init__(self):
        self.sent: List[Tuple[str, EmailMessage]] = []

    def publish(self, topic: str, message: EmailMessage) -> None:
        self.sent.append((topic, message))


def new_anime_message(anime, author_name: str, recipient: str) -> EmailMessage:
    body = (
        "New anime:\n"
        f"Title:        {anime.title}\n"
        f"Release Year: {anime.release_year}\n"
        f"Score:        {anime.score}\n"
        f"Author:       {author_name}\n"
    )
    return EmailMessage(recipient=recipient, subject="New Anime Notification", body=body)
