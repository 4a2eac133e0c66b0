"""
Data models of the capture batcher.
Holds the captured request record and the construction-time options,
which can also be read from the environment.
"""

import os
import typing as t

import structlog
from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, PositiveInt

log = structlog.get_logger(__name__)

TIMEOUT_MS_ENV_VAR = "REQCAPTURE_TIMEOUT_MS"
WAIT_FOR_CHECKPOINT_ENV_VAR = "REQCAPTURE_WAIT_FOR_CHECKPOINT"

_TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})


class CapturedRequest(BaseModel):
    """
    One observed HTTP request.

    ``body`` is only set for methods that carry a payload and when a body was
    extracted. ``None`` means absent, which differs from an empty string.
    """

    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    body: str | None = None

    def sort_key(self) -> tuple[str, str]:
        return self.url, self.method


CapturedRequestsHandler = t.Callable[[list[CapturedRequest]], None]


class CaptureOptions(BaseModel):
    """
    Construction-time configuration of a ``RequestCapturer``.

    Parameters
    ----------
    timeout_ms : int | None
        Inactivity window in milliseconds after which a checkpoint fires
        automatically. ``None`` disables automatic checkpoints.
    wait_for_checkpoint : bool
        If ``True``, observations suspend their caller until the next checkpoint.
    """

    model_config = ConfigDict(frozen=True)

    timeout_ms: PositiveInt | None = None
    wait_for_checkpoint: bool = False

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_ms is None:
            return None
        return self.timeout_ms / 1000

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "CaptureOptions":
        """
        Build options from ``REQCAPTURE_*`` environment variables.

        Parameters
        ----------
        load_dotenv_file : bool, optional
            Load the nearest ``.env`` file, searched from the working directory.

        Returns
        -------
        CaptureOptions
            Options read from the environment, defaults for unset variables.
        """
        if load_dotenv_file:
            load_dotenv(dotenv_path=find_dotenv(usecwd=True))
        raw_timeout = os.getenv(TIMEOUT_MS_ENV_VAR)
        raw_wait = os.getenv(WAIT_FOR_CHECKPOINT_ENV_VAR, "")
        options = cls(
            timeout_ms=int(raw_timeout) if raw_timeout else None,
            wait_for_checkpoint=raw_wait.strip().lower() in _TRUTHY_VALUES,
        )
        log.debug(
            event="Loaded capture options from environment",
            timeout_ms=options.timeout_ms,
            wait_for_checkpoint=options.wait_for_checkpoint,
        )
        return options
