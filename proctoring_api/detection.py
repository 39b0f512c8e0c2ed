"""Client-side detection loop.

Once a second the loop grabs a webcam frame, runs the face and object models
on it, turns what they found into a status line plus zero or more events, and
hands those events to a sink (normally :class:`~proctoring_api.client.ProctoringClient`).
The models, the camera and the overlay canvas are supplied by the caller.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import EventSource, EventType, Severity

logger = logging.getLogger(__name__)

DETECTION_INTERVAL = 1.0
MIN_FACE_RATIO = 0.1
MAX_FACE_RATIO = 0.3
SUSPICIOUS_OBJECTS = frozenset({"cell phone", "book", "laptop", "mouse", "keyboard"})

FACE_COLOR = "#00FF00"
OBJECT_COLOR = "#FF0000"


class Status(str, Enum):
    IDLE = "Idle"
    MONITORING = "Monitoring"
    NO_FACE = "No Face Detected"
    MULTIPLE_FACES = "Multiple Faces Detected"
    SUSPICIOUS_ACTIVITY = "Suspicious Activity Detected"
    FOCUSED = "Focused"
    MOVE_CLOSER = "Move closer"
    MOVE_BACK = "Move back"


@dataclass(frozen=True)
class Detection:
    label: str
    score: float
    box: Tuple[float, float, float, float]  # x, y, width, height

    @property
    def area(self) -> float:
        return self.box[2] * self.box[3]


class Frame(Protocol):
    width: int
    height: int


class FrameSource(Protocol):
    def read(self) -> Optional[Frame]: ...


class Detector(Protocol):
    def detect(self, frame: Frame) -> Sequence[Detection]: ...


class OverlayRenderer(Protocol):
    def clear(self, frame: Frame) -> None: ...

    def draw_box(self, box: Tuple[float, float, float, float], color: str, label: Optional[str] = None) -> None: ...


class EventSink(Protocol):
    def log_event(self, session_id: str, payload: Dict[str, Any]) -> Any: ...


@dataclass
class TickResult:
    status: Status
    events: List[Dict[str, Any]] = field(default_factory=list)


def _event(event_type: EventType, source: EventSource, details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event_type.value,
        "severity": Severity.WARNING.value,
        "source": source.value,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def classify_faces(
    faces: Sequence[Detection], frame_width: float, frame_height: float
) -> Tuple[Status, Optional[Dict[str, Any]]]:
    if not faces:
        return Status.NO_FACE, _event(EventType.NO_FACE, EventSource.FACE_DETECTION, {})
    if len(faces) > 1:
        return Status.MULTIPLE_FACES, _event(
            EventType.MULTIPLE_FACES, EventSource.FACE_DETECTION, {"count": len(faces)}
        )

    frame_area = frame_width * frame_height
    if frame_area <= 0:
        return Status.MONITORING, None
    ratio = faces[0].area / frame_area
    if ratio < MIN_FACE_RATIO:
        return Status.MOVE_CLOSER, None
    if ratio > MAX_FACE_RATIO:
        return Status.MOVE_BACK, None
    return Status.FOCUSED, None


def classify_objects(objects: Sequence[Detection]) -> Tuple[List[Detection], List[Dict[str, Any]]]:
    suspicious = [o for o in objects if o.label in SUSPICIOUS_OBJECTS]
    events = [
        _event(
            EventType.SUSPICIOUS_OBJECT,
            EventSource.OBJECT_DETECTION,
            {"object": o.label, "confidence": o.score, "bbox": list(o.box)},
        )
        for o in suspicious
    ]
    return suspicious, events


def analyze_frame(
    frame: Frame,
    face_detector: Detector,
    object_detector: Optional[Detector] = None,
    renderer: Optional[OverlayRenderer] = None,
) -> TickResult:
    if renderer is not None:
        renderer.clear(frame)

    faces = face_detector.detect(frame)
    status, face_event = classify_faces(faces, frame.width, frame.height)
    result = TickResult(status=status)
    if face_event is not None:
        result.events.append(face_event)
    elif renderer is not None and len(faces) == 1:
        renderer.draw_box(faces[0].box, FACE_COLOR)

    if object_detector is not None:
        suspicious, object_events = classify_objects(object_detector.detect(frame))
        if suspicious:
            result.status = Status.SUSPICIOUS_ACTIVITY
            result.events.extend(object_events)
        if renderer is not None:
            for o in suspicious:
                renderer.draw_box(o.box, OBJECT_COLOR, f"{o.label} ({round(o.score * 100)}%)")

    return result


class DetectionLoop:
    """Runs :func:`analyze_frame` every ``interval`` seconds for one session.

    Events are submitted on a single background worker and never awaited, so a
    slow backend cannot delay the next tick. ``start`` on a running loop
    restarts the timer; ``stop`` only clears it and does not cancel a tick
    that is already in progress.
    """

    def __init__(
        self,
        frames: FrameSource,
        face_detector: Detector,
        object_detector: Optional[Detector],
        sink: EventSink,
        renderer: Optional[OverlayRenderer] = None,
        interval: float = DETECTION_INTERVAL,
    ) -> None:
        self.frames = frames
        self.face_detector = face_detector
        self.object_detector = object_detector
        self.sink = sink
        self.renderer = renderer
        self.interval = interval
        self.status = Status.IDLE
        self.session_id: Optional[str] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="event-sink")
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, session_id: str) -> None:
        if not session_id:
            raise ValueError("A session id is required to start detection")
        with self._lock:
            self._halt()
            self.session_id = session_id
            self.status = Status.MONITORING
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run, args=(stop_event,), name="detection-loop", daemon=True
            )
            self._thread.start()
        logger.info("Detection started for session %s", session_id)

    def stop(self) -> None:
        with self._lock:
            self._halt()
            self.session_id = None
            self.status = Status.IDLE

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=True)

    def _halt(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval * 2)
        self._stop_event = None
        self._thread = None

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval):
            try:
                self.tick()
            except Exception:
                logger.exception("Detection tick failed")

    def tick(self) -> Optional[TickResult]:
        session_id = self.session_id
        if session_id is None:
            return None
        frame = self.frames.read()
        if frame is None:
            return None

        result = analyze_frame(frame, self.face_detector, self.object_detector, self.renderer)
        self.status = result.status
        for payload in result.events:
            self._submit(session_id, payload)
        return result

    def _submit(self, session_id: str, payload: Dict[str, Any]) -> Future:
        future = self._executor.submit(self.sink.log_event, session_id, payload)
        future.add_done_callback(lambda f: self._report_delivery(f, payload))
        return future

    @staticmethod
    def _report_delivery(future: Future, payload: Dict[str, Any]) -> None:
        error = future.exception()
        if error is not None:
            logger.warning("Failed to deliver %s event: %s", payload.get("type"), error)
