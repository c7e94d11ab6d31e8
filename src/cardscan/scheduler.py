"""Capture scheduling for card scanning.

Drives the sampling loop: while the camera is granted, the view is in the
foreground, no number is confirmed and the recognizer is available, a
capture -> recognize -> extract -> stabilize cycle fires immediately and
then on a fixed interval.

Everything runs on one asyncio event loop. Cycles are single-flight: a tick
that fires while a cycle is still running is a no-op. Cancellation (suspend,
rescan, detection) only stops the interval; an in-flight cycle always runs
to completion. Each cycle is tagged with the session generation current at
its start, and its result is dropped if a rescan has happened since; the
new session then captures immediately instead of waiting out the interval.
If camera permission goes away mid-session the loop stops and the status
falls back to requesting (or error, when access was denied).

Classes:
    ScanStatus        - requesting / scanning / detected / error
    SingleFlight      - idle/in-flight token released on every exit path
    ScanSnapshot      - Status projection for UI consumption
    CaptureScheduler  - The sampling loop
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Set

from .capture import FrameSource, PermissionState, TextRecognizer
from .cardnumber import mask_number
from .config import ScanConfig
from .errors import CaptureFailure, CardScanError, DependencyUnavailable, PermissionDenied
from .extraction import ExtractedCardData, extract_card_data
from .stabilizer import CardStabilizer, Detection

log = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = (
    "Camera scan requires the EasyOCR engine. Reinstall with OCR support to continue."
)
RETRY_MESSAGE = "Unable to read the digits. Give it another try."
PERMISSION_MESSAGE = "We need access to the camera to scan cards."


class ScanStatus(Enum):
    REQUESTING = "requesting"  # Waiting for camera permission
    SCANNING = "scanning"  # Sampling, no number confirmed yet
    DETECTED = "detected"  # Number confirmed, loop stopped
    ERROR = "error"  # Denied, OCR unavailable, or last cycle failed


class FlightState(Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class SingleFlight:
    """At most one capture cycle at a time.

    ``claim()`` yields True and holds the token for the duration of the
    ``with`` block (released on return, exception or cancellation), or
    yields False without touching it when a cycle is already in flight.
    """

    def __init__(self):
        self.state = FlightState.IDLE

    @property
    def busy(self) -> bool:
        return self.state is FlightState.IN_FLIGHT

    @contextmanager
    def claim(self) -> Iterator[bool]:
        if self.busy:
            yield False
            return
        self.state = FlightState.IN_FLIGHT
        try:
            yield True
        finally:
            self.state = FlightState.IDLE


@dataclass(frozen=True)
class ScanSnapshot:
    """Live scan state for UI consumption."""

    status: ScanStatus
    error_message: Optional[str]
    stability_progress: float  # min(hits, threshold) / threshold for the number
    number: Optional[str]  # Confirmed number
    expiry: Optional[str]  # Confirmed expiry
    message: str  # Human-readable status line
    rescan_enabled: bool


class CaptureScheduler:
    """Samples frames until a card number is confirmed.

    Must be driven from a running asyncio event loop. Typical use::

        async with CaptureScheduler(source, recognizer, config) as scheduler:
            detection = await scheduler.wait_for_detection(timeout=30)

    Args:
        frame_source: Camera capability (see :class:`cardscan.capture.FrameSource`).
        recognizer: OCR capability (see :class:`cardscan.capture.TextRecognizer`).
        config: Interval and threshold settings.
        on_detected: Called with the :class:`Detection` once the number confirms.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        recognizer: TextRecognizer,
        config: Optional[ScanConfig] = None,
        on_detected: Optional[Callable[[Detection], None]] = None,
    ):
        self.config = config or ScanConfig()
        self.frame_source = frame_source
        self.recognizer = recognizer
        self.on_detected = on_detected
        self.stabilizer = CardStabilizer(self.config.stable_matches)

        self.status = ScanStatus.REQUESTING
        self.error_message: Optional[str] = None
        self.last_error: Optional[CardScanError] = None
        self.focused = False
        self.ocr_unavailable = False
        # Bumped on every rescan; cycles from older generations are discarded
        self.generation = 0

        self._flight = SingleFlight()
        self._stop: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()
        self._detected = asyncio.Event()

    async def __aenter__(self) -> "CaptureScheduler":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # -- state ---------------------------------------------------------------

    @property
    def permission(self) -> PermissionState:
        return self.frame_source.permission

    @property
    def detection(self) -> Optional[Detection]:
        return self.stabilizer.detection

    @property
    def running(self) -> bool:
        """True while the interval loop is active."""
        return self._stop is not None

    @property
    def in_flight(self) -> bool:
        return self._flight.busy

    def should_scan(self) -> bool:
        return (
            self.permission is PermissionState.GRANTED
            and self.focused
            and self.detection is None
            and not self.ocr_unavailable
        )

    def snapshot(self) -> ScanSnapshot:
        return ScanSnapshot(
            status=self.status,
            error_message=self.error_message,
            stability_progress=self.stabilizer.progress,
            number=self.stabilizer.number.confirmed,
            expiry=self.stabilizer.expiry.confirmed,
            message=self._status_message(),
            rescan_enabled=(
                not self.ocr_unavailable and self.permission is not PermissionState.DENIED
            ),
        )

    def _status_message(self) -> str:
        if self.ocr_unavailable:
            return UNAVAILABLE_MESSAGE
        if self.permission is not PermissionState.GRANTED:
            return "Allow camera access to start scanning."
        if self.status is ScanStatus.DETECTED:
            return "We locked onto the digits."
        if self.status is ScanStatus.ERROR:
            return self.error_message or "Something went wrong while reading the card."
        if self.stabilizer.progress > 0:
            return "Hold steady while we confirm the numbers."
        return "Line up the card number in the frame."

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Resolve camera permission, check the recognizer and start scanning."""
        await self._resolve_permission(request=self.permission is PermissionState.UNDETERMINED)
        if not self.recognizer.available:
            self._mark_unavailable(DependencyUnavailable("Text recognizer is not installed"))
        self.resume()

    async def request_permission(self) -> PermissionState:
        """Ask for camera access again (e.g. after a denial)."""
        permission = await self._resolve_permission(request=True)
        self._ensure_loop()
        return permission

    def resume(self) -> None:
        """View came to the foreground."""
        self.focused = True
        self._ensure_loop()

    def suspend(self) -> None:
        """View went to the background. Stops the interval; in-flight work completes."""
        self.focused = False
        self._stop_loop()

    def rescan(self) -> bool:
        """Discard all candidates and restart scanning.

        Returns False (and does nothing) when the recognizer is unavailable.
        """
        if self.ocr_unavailable:
            return False

        self._stop_loop()
        self.generation += 1
        self.stabilizer.reset()
        self._detected.clear()
        self.last_error = None
        self.error_message = None
        if self.permission is PermissionState.GRANTED:
            self.status = ScanStatus.SCANNING
        else:
            self.status = ScanStatus.REQUESTING
        log.debug("Rescan requested, session generation %d", self.generation)
        self._ensure_loop()
        return True

    async def wait_for_detection(self, timeout: Optional[float] = None) -> Optional[Detection]:
        """Wait until the number is confirmed. Returns None on timeout."""
        if self.detection is None:
            try:
                await asyncio.wait_for(self._detected.wait(), timeout)
            except asyncio.TimeoutError:
                return None
        return self.detection

    async def aclose(self) -> None:
        """Stop scanning, let in-flight cycles finish and release the camera."""
        self.focused = False
        self._stop_loop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.frame_source.close()

    # -- loop ----------------------------------------------------------------

    def _ensure_loop(self) -> None:
        if self._stop is not None or not self.should_scan():
            return
        self._stop = asyncio.Event()
        self._track(asyncio.get_running_loop().create_task(self._drive(self._stop)))

    def _stop_loop(self) -> None:
        if self._stop is not None:
            self._stop.set()
            self._stop = None

    async def _drive(self, stop: asyncio.Event) -> None:
        """Tick now, then every ``scan_interval`` seconds until *stop* is set."""
        while not stop.is_set() and self.should_scan():
            self._tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.config.scan_interval)
            except asyncio.TimeoutError:
                pass
        if self._stop is stop:
            self._stop = None
            if self.detection is None and self.permission is not PermissionState.GRANTED:
                self._permission_lost()

    def _tick(self) -> None:
        if self._flight.busy:
            log.debug("Tick skipped, capture cycle still in flight")
            return
        self._track(asyncio.get_running_loop().create_task(self.capture_once()))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Scan task failed", exc_info=task.exception())

    # -- cycle ---------------------------------------------------------------

    async def capture_once(self) -> Optional[ExtractedCardData]:
        """
        Run one capture -> recognize -> extract -> stabilize cycle.

        Returns:
            The fields extracted from the frame, or None if the cycle was
            skipped (already in flight, done, unavailable), failed, or
            belonged to a session discarded by a rescan.
        """
        with self._flight.claim() as acquired:
            if not acquired:
                log.debug("Capture cycle already in flight")
                return None
            if self.detection is not None or self.ocr_unavailable:
                return None

            generation = self.generation
            data = await self._cycle(generation)

        if generation != self.generation and self.running and self.should_scan():
            # The restarted loop's first tick was swallowed by this stale cycle
            log.debug("Stale cycle finished, capturing for session %d now", self.generation)
            self._tick()
        return data

    async def _cycle(self, generation: int) -> Optional[ExtractedCardData]:
        self.status = ScanStatus.SCANNING
        self.error_message = None

        try:
            if not self.recognizer.available:
                raise DependencyUnavailable("Text recognizer is not installed")
            frame = await self.frame_source.capture()
            recognized = await self.recognizer.recognize(frame)
        except DependencyUnavailable as exc:
            self._mark_unavailable(exc)
            return None
        except Exception as exc:
            if generation != self.generation:
                log.debug("Ignoring failure from stale session %d: %s", generation, exc)
                return None
            log.warning("Card scan failed: %s", exc)
            if isinstance(exc, CardScanError):
                error = exc
            else:
                error = CaptureFailure(f"{type(exc).__name__}: {exc}")
            self._set_error(error, RETRY_MESSAGE)
            return None

        if generation != self.generation:
            log.debug(
                "Discarding result from stale session %d (current %d)",
                generation,
                self.generation,
            )
            return None

        data = extract_card_data(recognized)
        self._apply(data)
        return data

    def _apply(self, data: ExtractedCardData) -> None:
        expiry_before = self.stabilizer.expiry.confirmed
        number_confirmed = self.stabilizer.update(data)

        expiry = self.stabilizer.expiry.confirmed
        if expiry is not None and expiry_before is None:
            log.info("Expiry confirmed: %s", expiry)

        if number_confirmed and self.status is not ScanStatus.DETECTED:
            detection = self.stabilizer.detection
            self.status = ScanStatus.DETECTED
            self._stop_loop()
            log.info(
                "Card number confirmed: %s (%s)",
                mask_number(detection.number),
                detection.brand.value,
            )
            self._detected.set()
            if self.on_detected is not None:
                self.on_detected(detection)

    # -- errors --------------------------------------------------------------

    async def _resolve_permission(self, request: bool) -> PermissionState:
        permission = self.frame_source.permission
        if request:
            try:
                permission = await self.frame_source.request_permission()
            except Exception as exc:
                log.warning("Camera permission request failed: %s", exc)
                permission = PermissionState.DENIED
                self.frame_source.permission = permission

        if permission is PermissionState.GRANTED:
            if self.status is ScanStatus.REQUESTING or isinstance(self.last_error, PermissionDenied):
                self._clear_error()
                self.status = ScanStatus.SCANNING
        elif permission is PermissionState.DENIED:
            self._set_error(PermissionDenied("Camera access was denied"), PERMISSION_MESSAGE)
        return permission

    def _permission_lost(self) -> None:
        log.warning("Camera permission is %s, scanning stopped", self.permission.value)
        if self.permission is PermissionState.DENIED:
            self._set_error(PermissionDenied("Camera access was revoked"), PERMISSION_MESSAGE)
        elif not self.ocr_unavailable:
            self.status = ScanStatus.REQUESTING

    def _set_error(self, error: CardScanError, message: str) -> None:
        # A fatal OCR error stays visible over anything transient
        if self.ocr_unavailable:
            return
        self.last_error = error
        self.status = ScanStatus.ERROR
        self.error_message = message

    def _clear_error(self) -> None:
        if self.ocr_unavailable:
            return
        self.last_error = None
        self.error_message = None

    def _mark_unavailable(self, error: DependencyUnavailable) -> None:
        log.error("Text recognition unavailable: %s", error)
        self._set_error(error, UNAVAILABLE_MESSAGE)
        self.ocr_unavailable = True
        self._stop_loop()
