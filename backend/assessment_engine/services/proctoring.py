"""
Team Assessment Engine - Proctoring Score Aggregator
Turns an attempt's integrity event log into a single advisory trust score.
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from assessment_engine.core.config import settings
from assessment_engine.models.attempt import ProctorEvent, ProctorEventKind

# Points deducted per logged event, by kind
EVENT_PENALTIES = {
    ProctorEventKind.TAB_SWITCH: 5.0,
    ProctorEventKind.VISIBILITY_HIDDEN: 5.0,
    ProctorEventKind.BLUR: 2.0,
    ProctorEventKind.EXIT_FULLSCREEN: 8.0,
    ProctorEventKind.COPY: 4.0,
    ProctorEventKind.PASTE: 10.0,
    ProctorEventKind.CUT: 4.0,
    ProctorEventKind.CONTEXT_MENU: 1.0,
    ProctorEventKind.DEVTOOLS_OPEN: 15.0,
    ProctorEventKind.RESIZE: 1.0,
    ProctorEventKind.MULTI_MONITOR_HINT: 10.0,
}

# Most a single kind can take off, so one noisy signal cannot dominate
PENALTY_CAPS = {
    ProctorEventKind.BLUR: 20.0,
    ProctorEventKind.CONTEXT_MENU: 10.0,
    ProctorEventKind.RESIZE: 10.0,
}

# Kinds a client also counts in its tab-switch counter
TAB_SWITCH_KINDS = (ProctorEventKind.TAB_SWITCH, ProctorEventKind.VISIBILITY_HIDDEN)

# Unknown kinds still cost something
DEFAULT_PENALTY = 1.0


@dataclass
class ProctoringSummary:
    """Score plus the raw evidence it was computed from."""
    score: float
    event_counts: dict[str, int] = field(default_factory=dict)
    tab_switch_count: int = 0
    time_off_page_seconds: int = 0
    logged_tab_switches: int = 0

    @property
    def counter_divergence(self) -> int:
        """Client-reported tab switches minus logged tab-switch events."""
        return self.tab_switch_count - self.logged_tab_switches


def _kind_of(event: ProctorEvent) -> ProctorEventKind | str:
    try:
        return ProctorEventKind(event.kind)
    except ValueError:
        return event.kind


def count_events(events: Iterable[ProctorEvent]) -> Counter:
    """Number of logged events per kind."""
    return Counter(_kind_of(event) for event in events)


def kind_penalty(kind: ProctorEventKind | str, count: int) -> float:
    """Deduction for ``count`` events of one kind. Non-negative, non-decreasing in count."""
    weight = EVENT_PENALTIES.get(kind, DEFAULT_PENALTY)
    penalty = weight * max(count, 0)
    cap = PENALTY_CAPS.get(kind)
    if cap is not None:
        penalty = min(penalty, cap)
    return penalty


def calculate_proctoring_score(
    events: Iterable[ProctorEvent],
    baseline: float | None = None,
    floor: float | None = None,
) -> float:
    """
    Score the complete event log of an attempt.

    Starts from a perfect baseline, subtracts every kind's penalty and clamps
    at the floor. Adding an event can never raise the score.
    """
    baseline = settings.PROCTORING_BASELINE if baseline is None else baseline
    floor = settings.PROCTORING_FLOOR if floor is None else floor

    counts = count_events(events)
    deduction = sum(kind_penalty(kind, count) for kind, count in counts.items())
    return round(max(floor, baseline - deduction), 2)


def summarize_proctoring(
    events: Iterable[ProctorEvent],
    tab_switch_count: int = 0,
    time_off_page_seconds: int = 0,
) -> ProctoringSummary:
    """
    Score and evidence for graders.

    The event log is authoritative for the score. The client counters are
    reported alongside, and any disagreement shows up as counter_divergence
    instead of being folded in.
    """
    events = list(events)
    counts = count_events(events)
    return ProctoringSummary(
        score=calculate_proctoring_score(events),
        event_counts={
            (kind.value if isinstance(kind, ProctorEventKind) else kind): count
            for kind, count in counts.items()
        },
        tab_switch_count=tab_switch_count or 0,
        time_off_page_seconds=time_off_page_seconds or 0,
        logged_tab_switches=sum(counts.get(kind, 0) for kind in TAB_SWITCH_KINDS),
    )
