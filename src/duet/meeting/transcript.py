"""
Attributed meeting transcript in markdown format.

Combines the microphone and system transcripts after speaker mapping:
labels become roles, and system segments that merely echo a microphone
segment are dropped.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..utils import ConfigManager, replace_with_retries
from .speakers import (
    MICROPHONE,
    SYSTEM,
    SpeakerMapper,
    SpeakerMappingResult,
    TranscriptSegment,
    speaker_label,
)


@dataclass
class TranscriptEntry:
    """A single entry in the transcript."""
    timestamp: float      # Seconds from start
    speaker: str          # Original speaker label
    role: str             # interviewer / interviewee / unknown
    text: str             # What was said
    source: str = MICROPHONE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "speaker": self.speaker,
            "role": self.role,
            "text": self.text,
            "source": self.source
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptEntry":
        """Create from dictionary."""
        return cls(
            timestamp=data["timestamp"],
            speaker=data["speaker"],
            role=data.get("role", "unknown"),
            text=data["text"],
            source=data.get("source", MICROPHONE)
        )


@dataclass
class TranscriptWriter:
    """Builds and saves a role-attributed transcript of one recording."""

    output_dir: Path = field(default_factory=lambda: Path("recordings"))
    include_timestamps: bool = True
    meeting_name: Optional[str] = None
    mapper: SpeakerMapper = field(default_factory=SpeakerMapper)

    # Internal state
    entries: List[TranscriptEntry] = field(default_factory=list)
    meeting_start: Optional[datetime] = None
    suppressed_echoes: int = 0
    _mic_segments: List[TranscriptSegment] = field(default_factory=list, repr=False)

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)

    def add_entry(self, timestamp: float, speaker: str, role: str, text: str, source: str = MICROPHONE):
        """Add a transcript entry; blank text is ignored."""
        if not text or not text.strip():
            return
        self.entries.append(TranscriptEntry(
            timestamp=timestamp,
            speaker=speaker,
            role=role,
            text=text.strip(),
            source=source
        ))

    def add_recording(
        self,
        mic_segments: Sequence[TranscriptSegment],
        system_segments: Sequence[TranscriptSegment],
        result: Optional[SpeakerMappingResult] = None
    ) -> SpeakerMappingResult:
        """
        Add both streams of one recording.

        Maps speakers first when no result is given. System segments that
        are echoes of a microphone segment are skipped.
        """
        mic_segments = list(mic_segments or [])
        system_segments = list(system_segments or [])
        if result is None:
            result = self.mapper.map_speakers(mic_segments, system_segments)

        self.add_segments(mic_segments, MICROPHONE, result)
        self.add_segments(system_segments, SYSTEM, result)
        return result

    def add_segments(
        self,
        segments: Sequence[TranscriptSegment],
        source: str,
        result: SpeakerMappingResult
    ) -> int:
        """
        Add one stream's segments with labels replaced by roles.

        System segments that echo a microphone segment added earlier are
        skipped. Returns the number of entries added.
        """
        if self.meeting_start is None:
            self.meeting_start = datetime.now()

        added = 0
        for segment in segments or []:
            if source == MICROPHONE:
                self._mic_segments.append(segment)
            elif any(self.mapper.is_echo(mic, segment) for mic in self._mic_segments):
                self.suppressed_echoes += 1
                continue
            before = len(self.entries)
            self._add_segment(segment, source, result)
            added += len(self.entries) - before
        return added

    def _add_segment(self, segment: TranscriptSegment, source: str, result: SpeakerMappingResult):
        label = speaker_label(segment)
        role = SpeakerMapper.normalize_speaker_label(label, source, result)
        self.add_entry(segment.start_time or 0.0, label, role, segment.text, source)

    def get_duration(self) -> float:
        """Get transcript duration in seconds."""
        if not self.entries:
            return 0
        return max(e.timestamp for e in self.entries)

    def format_timestamp(self, seconds: float) -> str:
        """Format seconds as HH:MM:SS or MM:SS."""
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours:02d}:{minutes:02d}:{secs:02d}"
        return f"{minutes:02d}:{secs:02d}"

    def display_name(self, entry: TranscriptEntry) -> str:
        if entry.role == "unknown":
            return entry.speaker
        return entry.role.capitalize()

    def generate_markdown(self) -> str:
        """Generate the full markdown transcript."""
        if not self.meeting_start:
            self.meeting_start = datetime.now()

        title = f"# {self.meeting_name}" if self.meeting_name else "# Meeting Transcript"
        participants = sorted({self.display_name(e) for e in self.entries})

        lines = [
            title,
            "",
            f"**Date**: {self.meeting_start.strftime('%Y-%m-%d %H:%M')}",
            f"**Duration**: {int(self.get_duration() // 60)} minutes",
            f"**Participants**: {', '.join(participants)}",
            "",
            "---",
            ""
        ]

        if self.entries:
            lines.append("## Full Transcript")
            lines.append("")

            # Mic and system segments arrive as two separate lists
            for entry in sorted(self.entries, key=lambda e: e.timestamp):
                name = self.display_name(entry)
                if self.include_timestamps:
                    lines.append(f"**[{self.format_timestamp(entry.timestamp)}] {name}**: {entry.text}")
                else:
                    lines.append(f"**{name}**: {entry.text}")
                lines.append("")

        return "\n".join(lines)

    def save(self, filename: Optional[str] = None) -> Path:
        """Save transcript to file (atomic write)."""
        if filename is None:
            start = self.meeting_start or datetime.now()
            filename = start.strftime("meeting_%Y%m%d_%H%M%S.md")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / filename
        content = self.generate_markdown()

        temp_path = filepath.with_suffix('.tmp')
        temp_path.write_text(content, encoding='utf-8')
        replace_with_retries(temp_path, filepath)
        ConfigManager.console_print(f"[Transcript] Saved to: {filepath}")
        return filepath

    def get_full_text(self) -> str:
        """Get all text without formatting."""
        sorted_entries = sorted(self.entries, key=lambda e: e.timestamp)
        return "\n".join(f"{self.display_name(e)}: {e.text}" for e in sorted_entries)
