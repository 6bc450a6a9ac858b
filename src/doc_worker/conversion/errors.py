"""Failure taxonomy for conversion jobs and the ack/nack policy built on it.

`classify` turns whatever a job raised into a `Verdict`; `decide` maps a
verdict to what the consumer does with the delivery. Both are pure so the
policy can be tested without a broker.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

import requests
from botocore.exceptions import BotoCoreError, ClientError


class ConversionError(Exception):
    """Base class for failures raised by the conversion pipeline."""


class DecodeError(ConversionError):
    """Message body is not a valid job request."""


class SourceNotFoundError(ConversionError):
    """The source document does not exist at its locator."""


class RenderError(ConversionError):
    """Permanent rendering failure; retrying cannot help."""


class UnsupportedSourceError(RenderError):
    """No renderer handles this source extension / output format."""


class MissingOutputError(RenderError):
    """Renderer returned without producing the expected output file."""


class TransientError(ConversionError):
    """Infrastructure hiccup; the job may succeed on redelivery."""


class RenderTimeoutError(TransientError):
    """Renderer exceeded its time budget and was killed."""


class Verdict(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    RENDER_FAILURE = "render_failure"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Disposition:
    """What to do with a delivery once its job is terminal.

    `outcome` is the `success` flag to publish, or None when nothing is
    published.
    """

    ack: bool
    requeue: bool = False
    outcome: bool | None = None


_MISSING_STATUSES = {404, 410}


def classify(error: BaseException | None) -> Verdict:
    if error is None:
        return Verdict.SUCCESS
    if isinstance(error, DecodeError):
        return Verdict.MALFORMED
    if isinstance(error, SourceNotFoundError):
        return Verdict.NOT_FOUND
    if isinstance(error, requests.HTTPError):
        status = getattr(error.response, "status_code", None)
        if status in _MISSING_STATUSES:
            return Verdict.NOT_FOUND
        return Verdict.TRANSIENT
    if isinstance(error, RenderError):
        return Verdict.RENDER_FAILURE
    if isinstance(error, (TransientError, requests.RequestException, ClientError, BotoCoreError)):
        return Verdict.TRANSIENT
    if isinstance(error, (OSError, asyncio.TimeoutError)):
        return Verdict.TRANSIENT
    return Verdict.UNKNOWN


def decide(verdict: Verdict, *, drop_malformed: bool = True, attempts_exhausted: bool = False) -> Disposition:
    if verdict is Verdict.SUCCESS:
        return Disposition(ack=True, outcome=True)
    if verdict in (Verdict.NOT_FOUND, Verdict.RENDER_FAILURE):
        return Disposition(ack=True, outcome=False)
    if verdict is Verdict.MALFORMED:
        # No job identity, so never an outcome.
        if drop_malformed:
            return Disposition(ack=True)
        return Disposition(ack=False, requeue=True)
    if attempts_exhausted:
        return Disposition(ack=True, outcome=False)
    return Disposition(ack=False, requeue=True)
