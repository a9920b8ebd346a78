"""
Real-time replay of a timeline.

``RealtimeEmitter`` sends each timeline event when the wall clock reaches
its file-relative timestamp, so receivers see events at the pace the audio
would play. Every target time is computed from one fixed baseline taken
when playback starts, never from the previous event, so scheduling error
does not accumulate.

States::

    IDLE -> [PREROLL] -> PLAYING -> COMPLETED
                 |           |
                 +-----------+----> ABORTED

Waiting is done in slices of at most ``poll_interval`` seconds, checking
the cancellation token between slices. On cancellation a single
``track.abort`` is sent and nothing else follows it.
"""

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from beatcast.cancellation import CancellationToken
from beatcast.envelope import Envelope, TrackAbort, TrackPrepare
from beatcast.timeline import TimelineEvent
from beatcast.transport import MulticastTransport

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

DEFAULT_POLL_INTERVAL = 0.1


class EmitterState(Enum):
    IDLE = "idle"
    PREROLL = "preroll"
    PLAYING = "playing"
    COMPLETED = "completed"
    ABORTED = "aborted"


class RealtimeEmitter:
    """Replay a timeline over a transport at original-file pacing.

    Args:
        transport: Anything with a ``send(bytes)`` method.
        token: Cancellation token, usually set from a signal handler.
        preroll_s: Optional countdown before playback. ``None`` or 0 skips it.
        source_path: File named in the ``track.prepare`` notification.
        poll_interval: Upper bound on one blocking wait, in seconds.
        clock: Monotonic clock in seconds.
        sleep: Blocking wait; defaults to waiting on the token so a cancel
            wakes the emitter immediately.
    """

    def __init__(
        self,
        transport: MulticastTransport,
        token: CancellationToken,
        preroll_s: Optional[float] = None,
        source_path: Optional[Union[str, Path]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.transport = transport
        self.token = token
        self.preroll_s = preroll_s
        self.source_path = Path(source_path).resolve() if source_path else None
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep or token.wait
        self.state = EmitterState.IDLE
        self.events_sent = 0

    def run(self, timeline: Iterable[TimelineEvent]) -> EmitterState:
        """Play the timeline to completion or until cancelled.

        Returns:
            ``COMPLETED`` or ``ABORTED``.
        """
        if self.preroll_s:
            self.state = EmitterState.PREROLL
            if not self._preroll(self.preroll_s):
                return self.state

        timeline = list(timeline)
        self.state = EmitterState.PLAYING
        logger.info("Playback started: %d events", len(timeline))
        baseline = self._clock()

        for event in timeline:
            if not self._wait_until(baseline + event.timestamp):
                self._abort(max(0.0, self._clock() - baseline))
                return self.state
            self.transport.send(event.data)
            self.events_sent += 1

        self.state = EmitterState.COMPLETED
        logger.info("Playback complete: %d events sent", self.events_sent)
        return self.state

    def _preroll(self, countdown: float) -> bool:
        filename = str(self.source_path) if self.source_path else ""
        logger.info("Pre-roll: %.1fs countdown", countdown)
        self._send(Envelope(-countdown, TrackPrepare(filename=filename, countdown=countdown)))
        start = self._clock()
        if self._wait_until(start + countdown):
            return True
        self._abort(min(0.0, self._clock() - start - countdown))
        return False

    def _wait_until(self, target: float) -> bool:
        """Block until ``target`` on the clock. False if cancelled first."""
        while True:
            if self.token.cancelled:
                return False
            remaining = target - self._clock()
            if remaining <= 0:
                return True
            self._sleep(min(remaining, self.poll_interval))

    def _abort(self, position: float) -> None:
        reason = self.token.reason or "user_interrupt"
        logger.warning("Interrupted at %.2fs (%s)", position, reason)
        self._send(Envelope(position, TrackAbort(reason=reason)))
        self.state = EmitterState.ABORTED

    def _send(self, envelope: Envelope) -> None:
        self.transport.send(envelope.to_bytes())
        self.events_sent += 1
