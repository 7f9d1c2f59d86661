from __future__ import annotations

from typing import Dict, Iterable, List

from caption_relay.schemas.transcript import TranscriptFragment

UNKNOWN_SPEAKER = "Unknown Speaker"


def format_transcript(fragments: Iterable[TranscriptFragment]) -> str:
    """Render fragments as `speaker: text` lines ordered by start time.

    Lines with blank text and no identified speaker are dropped. The sort is
    stable, so equal start times keep their incoming order.
    """
    lines: List[str] = []
    for fragment in sorted(fragments, key=lambda f: f.start_time):
        speaker = fragment.speaker_name or UNKNOWN_SPEAKER
        text = fragment.text or ""
        if not text.strip() and speaker == UNKNOWN_SPEAKER:
            continue
        lines.append(f"{speaker}: {text}")
    return "\n".join(lines)


class FragmentBuffer:
    """In-memory fragments keyed by chunk id, last write wins.

    Only touched from the event loop that owns the session, so there is no
    locking; every method is synchronous.
    """

    def __init__(self) -> None:
        self._chunks: Dict[str, TranscriptFragment] = {}

    def __len__(self) -> int:
        return len(self._chunks)

    def __bool__(self) -> bool:
        return bool(self._chunks)

    def put(self, fragment: TranscriptFragment) -> None:
        self._chunks[fragment.chunk_id] = fragment

    def fragments(self) -> List[TranscriptFragment]:
        return sorted(self._chunks.values(), key=lambda f: f.start_time)

    def compact(self) -> str:
        return format_transcript(self._chunks.values())

    def drain(self) -> str:
        text = self.compact()
        self._chunks = {}
        return text

    def take(self) -> List[TranscriptFragment]:
        """Remove and return every buffered fragment."""
        taken = list(self._chunks.values())
        self._chunks = {}
        return taken

    def restore(self, fragments: Iterable[TranscriptFragment]) -> None:
        """Put back fragments from a failed flush.

        A chunk that received a newer fragment in the meantime keeps the
        newer one.
        """
        for fragment in fragments:
            self._chunks.setdefault(fragment.chunk_id, fragment)

    def clear(self) -> None:
        self._chunks = {}
