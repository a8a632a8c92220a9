"""
Readiness poller for WAL archiving
Polls pg_stat_replication until the streaming client has moved past a segment
"""
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence
from db_config import PollerConfig
from db_connection import DatabaseConnection, StatusSourceError

logger = logging.getLogger(__name__)

EXIT_READY = 0
EXIT_FAILURE = 1


class PollOutcome(Enum):
    """Classification of a single status query"""
    NOT_READY = "not_ready"
    READY = "ready"
    NO_CLIENT = "no_client"
    TOO_MANY_CLIENTS = "too_many_clients"
    MALFORMED_RESULT = "malformed_result"
    CONNECTION_ERROR = "connection_error"

    @property
    def is_fatal(self) -> bool:
        return self in (
            PollOutcome.TOO_MANY_CLIENTS,
            PollOutcome.MALFORMED_RESULT,
            PollOutcome.CONNECTION_ERROR,
        )

    @property
    def is_terminal(self) -> bool:
        return self is PollOutcome.READY or self.is_fatal


class PollerState(Enum):
    """Where the poller is in its retry cycle"""
    IDLE = "idle"
    QUERYING = "querying"
    NOT_READY = "not_ready"
    READY = "ready"
    FATAL = "fatal"


@dataclass
class StatusRow:
    """Position the streaming client has acknowledged"""
    replay_position: Optional[str]
    segment_name: Optional[str]


@dataclass
class PollResult:
    """Outcome of one poll plus the row it was derived from"""
    outcome: PollOutcome
    row: Optional[StatusRow] = None
    detail: str = ""


@dataclass
class RetryState:
    """Per-run retry counters, never persisted"""
    attempt_count: int = 0
    first_attempt: bool = True
    last_attempt_at: Optional[float] = None

    def record_attempt(self, now: float):
        self.attempt_count += 1
        self.first_attempt = False
        self.last_attempt_at = now

    def elapsed_since_last_attempt(self, now: float) -> Optional[float]:
        if self.last_attempt_at is None:
            return None
        return now - self.last_attempt_at


def is_safe_to_archive(target_segment: str, segment_name: str) -> bool:
    """
    True when the client has streamed past target_segment.

    Segment names are fixed-width, zero-padded hex, so string order is log
    order. The same file is not safe: the client may still be writing it.
    """
    return target_segment < segment_name


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


def classify_result(target_segment: str, rows: Sequence[Sequence], column_count: int) -> PollResult:
    """Turn a status query result into a PollResult"""
    if len(rows) == 0:
        return PollResult(PollOutcome.NO_CLIENT, detail="no replication clients active")

    if len(rows) > 1:
        return PollResult(
            PollOutcome.TOO_MANY_CLIENTS,
            detail=f"{len(rows)} replication clients found, can only work with 1",
        )

    if column_count != 2:
        # Only reachable with a custom query
        return PollResult(
            PollOutcome.MALFORMED_RESULT,
            detail=f"custom query returned {column_count} fields, must be 2",
        )

    row = StatusRow(replay_position=_text(rows[0][0]), segment_name=_text(rows[0][1]))

    # No position reported yet (client still starting up)
    if row.segment_name is None:
        return PollResult(
            PollOutcome.NOT_READY, row,
            detail=f"client has not reported a position yet, not ready to archive {target_segment}",
        )

    if is_safe_to_archive(target_segment, row.segment_name):
        return PollResult(
            PollOutcome.READY, row,
            detail=(
                f"file {target_segment} is ok to archive "
                f"(current streaming position {row.replay_position}, file {row.segment_name})"
            ),
        )

    return PollResult(
        PollOutcome.NOT_READY, row,
        detail=(
            f"current streamed position ({row.replay_position}, file {row.segment_name}) "
            f"is not past archive file ({target_segment}), not ready to archive"
        ),
    )


class ReadinessPoller:
    """Waits until a WAL segment is safe to archive"""

    def __init__(
        self,
        config: PollerConfig,
        db: DatabaseConnection,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.db = db
        self.sleep = sleep
        self.clock = clock
        self.state = PollerState.IDLE
        self.retry = RetryState()

    def poll_once(self, target_segment: str) -> PollResult:
        """Run the status query once and classify the answer"""
        self.state = PollerState.QUERYING

        try:
            if self.config.custom_query is None:
                query, params = self.config.status_query(self.db.server_version)
            else:
                query, params = self.config.status_query()
            rows, column_count = self.db.fetch_status(query, params)
        except StatusSourceError as e:
            result = PollResult(PollOutcome.CONNECTION_ERROR, detail=str(e))
        else:
            result = classify_result(target_segment, rows, column_count)
        finally:
            now = self.clock()
            elapsed = self.retry.elapsed_since_last_attempt(now)
            self.retry.record_attempt(now)

        self._transition(result)
        self._report(result, elapsed)
        return result

    def _transition(self, result: PollResult):
        if result.outcome is PollOutcome.READY:
            self.state = PollerState.READY
        elif result.outcome.is_fatal:
            self.state = PollerState.FATAL
        else:
            self.state = PollerState.NOT_READY

    def _report(self, result: PollResult, elapsed: Optional[float] = None):
        if result.outcome.is_fatal:
            logger.error(f"✗ {result.detail}")
            return

        if not self.config.verbose:
            return

        attempt = f"{self.retry.attempt_count}"
        if elapsed is not None:
            attempt += f", last attempt {elapsed:.0f}s ago"
        if result.outcome is PollOutcome.READY:
            logger.info(f"[attempt {attempt}] ✓ {result.detail}")
        elif result.outcome is PollOutcome.NO_CLIENT and self.config.custom_query is None:
            logger.info(
                f"[attempt {attempt}] ○ No client named '{self.config.application_name}' "
                f"streaming yet, waiting {self.config.poll_interval}s"
            )
        else:
            logger.info(f"[attempt {attempt}] ○ {result.detail}, waiting {self.config.poll_interval}s")

    def determine_readiness(self, target_segment: str) -> int:
        """
        Poll until target_segment is safe to archive or polling cannot help.

        Waits initial_delay before the first attempt and poll_interval before
        every later one. NO_CLIENT and NOT_READY are retried forever.

        Returns:
            EXIT_READY once the client has passed the segment, EXIT_FAILURE
            on a fatal outcome
        """
        self.state = PollerState.IDLE
        self.retry = RetryState()

        while True:
            delay = self.config.initial_delay if self.retry.first_attempt else self.config.poll_interval
            if delay:
                self.sleep(delay)

            result = self.poll_once(target_segment)

            if result.outcome is PollOutcome.READY:
                return EXIT_READY
            if result.outcome.is_fatal:
                return EXIT_FAILURE
