from __future__ import annotations

import logging
from typing import Optional

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import SubmissionError
from .fleet.base import FleetManager
from .schemas import DispatchRequest, DispatchResult


LOGGER = logging.getLogger("fleet_dispatch.dispatcher")


class Dispatcher:
    """
    Hand a request to the fleet manager and return its acknowledgement.

    Acceptance is all that is awaited; execution on the node is observed
    separately through the log sink. Failures are raised as
    :class:`SubmissionError` and never retried here, since the remote action
    may not be idempotent.
    """

    def __init__(self, fleet_manager: FleetManager) -> None:
        self._fleet = fleet_manager

    def submit(self, request: DispatchRequest, idempotency_key: Optional[str] = None) -> DispatchResult:
        LOGGER.info(
            "Submitting %s to %s in %s (log sink %s)",
            request.execution_directive,
            request.target_id,
            request.region,
            request.log_sink,
        )
        try:
            result = self._fleet.submit(request, idempotency_key=idempotency_key)
        except SubmissionError:
            LOGGER.error("Submission to %s in %s was not accepted", request.target_id, request.region)
            raise
        except Exception as exc:
            LOGGER.error("Submission to %s raised %s", request.target_id, exc)
            raise SubmissionError(request.target_id, str(exc)) from exc
        LOGGER.info("Command %s accepted for %s", result.command_id, request.target_id)
        return result


def submit_with_retry(
    dispatcher: Dispatcher,
    request: DispatchRequest,
    attempts: int = 1,
    idempotency_key: Optional[str] = None,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> DispatchResult:
    """
    Caller-side retry around :meth:`Dispatcher.submit`.

    Every attempt reuses *idempotency_key*. With ``attempts=1`` this is a
    plain submission.
    """
    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(SubmissionError),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            if attempt.retry_state.attempt_number > 1:
                LOGGER.warning(
                    "Retrying submission to %s (attempt %d/%d, key %s)",
                    request.target_id,
                    attempt.retry_state.attempt_number,
                    attempts,
                    idempotency_key,
                )
            return dispatcher.submit(request, idempotency_key=idempotency_key)
    raise SubmissionError(request.target_id, "no submission attempt was made")  # pragma: no cover


__all__ = ["Dispatcher", "submit_with_retry"]
