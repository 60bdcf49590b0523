"""Bounded retry of idempotent saga steps on transient store failures."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from wordmesh.config import RetryConfig
from wordmesh.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Runs a step, retrying only on StoreUnavailableError.

    The last error is re-raised unchanged once *attempts* is exhausted.
    Only call this with idempotent steps.
    """

    def __init__(self, config: RetryConfig | None = None) -> None:
        self.config = config or RetryConfig()

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.config.attempts),
            wait=wait_exponential(
                multiplier=self.config.initial_delay,
                max=self.config.max_delay,
            ),
            retry=retry_if_exception_type(StoreUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, step: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return self._retrying()(step, *args, **kwargs)
