from typing import Dict, Iterable

from .models import Event, EventType, Session, utcnow


# Points deducted from a perfect score of 100 for each occurrence.
EVENT_WEIGHTS: Dict[EventType, int] = {
    EventType.TAB_SWITCH: 2,
    EventType.WINDOW_RESIZE: 1,
    EventType.COPY_PASTE: 3,
    EventType.PRINT_SCREEN: 5,
    EventType.FACE_LOST: 2,
    EventType.NO_FACE: 5,
    EventType.MULTIPLE_FACES: 10,
    EventType.SUSPICIOUS_OBJECT: 8,
    EventType.FORBIDDEN_OBJECT: 10,
}


def summarize_events(events: Iterable[Event]) -> Dict[str, int]:
    counts: Dict[str, int] = {t.value: 0 for t in EventType}
    for e in events:
        counts[e.type.value] += 1
    return {k: v for k, v in counts.items() if v}


def anomaly_count(counts: Dict[str, int]) -> int:
    return sum(v for k, v in counts.items() if EventType(k) in EVENT_WEIGHTS)


def compute_integrity_score(counts: Dict[str, int]) -> int:
    score = 100
    for k, v in counts.items():
        score -= v * EVENT_WEIGHTS.get(EventType(k), 0)
    return max(0, score)


def session_duration(session: Session) -> float:
    """Stored duration for ended sessions, elapsed time so far for active ones."""
    if session.end_time is not None:
        return session.duration
    return max(0.0, (utcnow() - session.start_time).total_seconds())
