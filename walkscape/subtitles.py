"""SRT parsing and subtitle synchronization."""

import re
from typing import Optional

from .models import SubtitleCue

TIMECODE_RE = re.compile(r"^\s*(\d+):(\d{1,2}):(\d{1,2})(?:[,.](\d{1,3}))?\s*$")
BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")


def timecode_to_seconds(timecode: str) -> float:
    """Convert 'HH:MM:SS,mmm' to seconds; raises ValueError on malformed input"""
    match = TIMECODE_RE.match(timecode)
    if not match:
        raise ValueError(f"Malformed timecode: {timecode!r}")
    hours, minutes, seconds, millis = match.groups()
    total = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    if millis:
        total += int(millis.ljust(3, "0")) / 1000
    return total


def format_timecode(seconds: float) -> str:
    """Convert seconds to 'HH:MM:SS,mmm'"""
    millis = int(round(max(0.0, seconds) * 1000))
    hours, millis = divmod(millis, 3600000)
    minutes, millis = divmod(millis, 60000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def parse_srt(content: Optional[str]) -> list[SubtitleCue]:
    """Parse SRT text into cues.

    Blocks with fewer than three lines, or whose timecode line does not
    parse, are skipped rather than raising.
    """
    if not content:
        return []
    text = content.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not text:
        return []

    cues = []
    for block in BLOCK_SPLIT_RE.split(text):
        lines = block.strip().split("\n")
        if len(lines) < 3:
            continue
        if "-->" not in lines[1]:
            continue
        start, _, end = lines[1].partition("-->")
        try:
            start_seconds = timecode_to_seconds(start)
            end_seconds = timecode_to_seconds(end)
        except ValueError:
            continue
        try:
            index = int(lines[0].strip())
        except ValueError:
            index = len(cues) + 1
        cues.append(SubtitleCue(
            start_seconds=start_seconds,
            end_seconds=end_seconds,
            text="\n".join(lines[2:]),
            index=index,
        ))
    return cues


def cues_to_srt(cues: list[SubtitleCue]) -> str:
    """Serialize cues back into SRT text, renumbering from 1"""
    blocks = []
    for i, cue in enumerate(cues, start=1):
        blocks.append(
            f"{i}\n{format_timecode(cue.start_seconds)} --> {format_timecode(cue.end_seconds)}\n{cue.text}"
        )
    return "\n\n".join(blocks) + ("\n" if blocks else "")


def active_cue(cues: list[SubtitleCue], t: float) -> Optional[SubtitleCue]:
    """Return the cue with start <= t <= end, or None in a gap"""
    for cue in cues:
        if cue.start_seconds <= t <= cue.end_seconds:
            return cue
    return None


def tone_cues(frequency: float, duration: float) -> list[SubtitleCue]:
    """Placeholder captions shown while a synthetic tone plays"""
    return [
        SubtitleCue(0, 3, f"Playing {frequency:g}Hz tone...", 1),
        SubtitleCue(3, 8, "This is a demo subtitle for the audio tone.", 2),
        SubtitleCue(8, 12, "Walk to the next region to hear its track.", 3),
        SubtitleCue(12, max(12.0, duration), "Audio will stop automatically.", 4),
    ]


class SubtitleSynchronizer:
    """Tracks the displayed cue for one playback session.

    Fed from the session's time-update signal only, so the displayed cue
    always matches the audio position.
    """

    def __init__(self, cues: Optional[list[SubtitleCue]] = None):
        self.cues: list[SubtitleCue] = list(cues or [])
        self.current: Optional[SubtitleCue] = None

    def load(self, cues: list[SubtitleCue]):
        self.cues = list(cues)
        self.current = None

    def update(self, t: float) -> Optional[SubtitleCue]:
        """Recompute the displayed cue; clears it when t falls in a gap"""
        self.current = active_cue(self.cues, t)
        return self.current

    def clear(self):
        self.cues = []
        self.current = None
