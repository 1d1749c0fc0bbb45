from __future__ import annotations

from typing import Iterable, Iterator, List, Optional, Tuple

from .types import Matching


def build_timeline(matchings: Iterable[Matching]) -> List[Matching]:
    """Order per-frame results and collapse runs showing the same page.

    The first entry of each run is kept. The end-of-video entry is never
    folded and always closes the timeline, so exactly one must be present.
    A video that ends on a no-match run therefore has two trailing entries
    without a page: the start of that run and the end-of-video entry.
    """

    entries = sorted(matchings, key=lambda m: (m.end_of_video, m.time_offset, m.frame_index))
    sentinels = [entry for entry in entries if entry.end_of_video]
    if len(sentinels) != 1:
        raise ValueError(f"a timeline needs exactly one end-of-video entry, got {len(sentinels)}")
    sentinel = sentinels[0]

    timeline: List[Matching] = []
    for entry in entries[:-1]:
        if timeline and timeline[-1].page == entry.page:
            continue
        timeline.append(entry)
    if timeline and timeline[-1].time_offset >= sentinel.time_offset:
        raise ValueError("end-of-video entry must come after every frame")
    timeline.append(sentinel)
    return timeline


def timeline_durations(timeline: List[Matching]) -> Iterator[Tuple[Matching, Optional[int]]]:
    """Yield each entry with the milliseconds until the next one (``None`` for the last)."""

    for position, entry in enumerate(timeline):
        if position + 1 < len(timeline):
            yield entry, timeline[position + 1].video_ms - entry.video_ms
        else:
            yield entry, None
