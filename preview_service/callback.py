"""Outbound result callback."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import PreviewConfig
from .errors import CallbackDeliveryError
from .task import BatchOutcome

logger = logging.getLogger(__name__)


class ResultNotifier:
    """POSTs a batch outcome to the configured callback endpoint."""

    def __init__(self, config: PreviewConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def send(self, outcome: BatchOutcome) -> None:
        """Deliver the outcome; raises CallbackDeliveryError on failure."""
        if not self.config.callback_url:
            raise CallbackDeliveryError("callback URL is not configured")

        headers = {"Content-Type": "application/json"}
        if self.config.callback_secret:
            headers[self.config.callback_secret_header] = self.config.callback_secret

        try:
            response = self.session.post(
                self.config.callback_url,
                json=outcome.to_callback_payload(),
                headers=headers,
                timeout=self.config.callback_timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CallbackDeliveryError(f"callback for task {outcome.task_id} failed: {exc}") from exc

    def notify(self, outcome: BatchOutcome) -> bool:
        """Deliver the outcome and log, never raise. Returns delivery success."""
        try:
            self.send(outcome)
        except CallbackDeliveryError as exc:
            logger.error(str(exc))
            return False
        logger.info(f"Callback delivered for task {outcome.task_id} ({outcome.status.value})")
        return True
