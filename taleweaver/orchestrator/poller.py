"""State machine driving one remote asynchronous job to a terminal state.

States:
- creating  -- submit the job and obtain its external id
- polling   -- fetch status every ``interval`` seconds
- succeeded -- provider reported success with a non-empty output
- failed    -- submission error, provider failure status, empty output or
               timeout

Every transition is reported to ``on_transition`` before anything else
happens, so callers can persist live progress. Failures raise; callers
driving a batch treat that as an abort of the remaining units.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from taleweaver.errors import ExternalJobError, ExternalJobTimeout
from taleweaver.schemas.artifacts import VideoJobStatus

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"succeeded"})
FAILURE_STATUSES = frozenset({"failed", "error", "cancelled"})


@dataclass
class Transition:
    state: str
    job_id: str = ""
    output_url: str = ""
    error: Optional[str] = None


async def drive_external_job(
    submit: Callable[[], Awaitable[str]],
    poll: Callable[[str], Awaitable[VideoJobStatus]],
    on_transition: Callable[[Transition], None],
    *,
    interval: float = 2.5,
    timeout: float = 720.0,
    label: str = "clip",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """Submit a remote job and poll it until it reaches a terminal state.

    Args:
        submit: Creates the remote job, returns its id
        poll: Fetches the status of a job id
        on_transition: Observer for every state change
        interval: Seconds between polls
        timeout: Seconds of polling after which the job counts as failed
        label: Prefix of error reason codes
        clock: Monotonic clock used for the timeout
        sleep: Awaitable sleep used between polls

    Returns:
        The output url of the succeeded job

    Raises:
        ExternalJobError: Provider reported failure or gave no output
        ExternalJobTimeout: Still not terminal after ``timeout`` seconds
        Exception: Whatever ``submit`` or ``poll`` raised
    """
    on_transition(Transition(state="creating"))
    try:
        job_id = await submit()
    except Exception as e:
        on_transition(Transition(state="failed", error=str(e) or type(e).__name__))
        raise

    on_transition(Transition(state="polling", job_id=job_id))
    started = clock()

    while True:
        if clock() - started > timeout:
            message = f"{label}_timeout:{job_id}"
            on_transition(Transition(state="failed", job_id=job_id, error=message))
            raise ExternalJobTimeout(message, job_id=job_id)

        try:
            status = await poll(job_id)
        except Exception as e:
            on_transition(Transition(state="failed", job_id=job_id, error=str(e) or type(e).__name__))
            raise

        state = (status.status or "").lower()
        if state in SUCCESS_STATUSES:
            if not status.video_url:
                message = f"{label}_no_video_url:{job_id}"
                on_transition(Transition(state="failed", job_id=job_id, error=message))
                raise ExternalJobError(message, job_id=job_id)
            on_transition(Transition(state="succeeded", job_id=job_id, output_url=status.video_url))
            return status.video_url

        if state in FAILURE_STATUSES:
            message = f"{label}_failed:{job_id}:{state}"
            on_transition(Transition(state="failed", job_id=job_id, error=message))
            raise ExternalJobError(message, job_id=job_id)

        logger.debug(f"Job {job_id} still {state or 'unknown'}; next poll in {interval}s")
        await sleep(interval)
