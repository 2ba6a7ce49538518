"""
Speaker-role attribution across the microphone and system transcripts.

Each stream is transcribed and diarized on its own, so the same person can
carry different labels ("Speaker A" on the mic, "Speaker B" on the
loopback). After a recording ends, SpeakerMapper maps every label of each
stream onto a meeting role and scores how much that mapping can be trusted.

The mapper never raises: missing or malformed data degrades the mapping
and the confidence instead.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Type

from ..logger import log_debug
from ..utils import ConfigManager

MICROPHONE = "microphone"
SYSTEM = "system"

INTERVIEWER = "interviewer"
INTERVIEWEE = "interviewee"
UNKNOWN_ROLE = "unknown"

UNKNOWN_LABEL = "Unknown"

MIN_PHRASE_LENGTH = 10

# Defaults; all times are in seconds
SIMILARITY_THRESHOLD = 0.6
ECHO_DELAY = 0.2
ECHO_RATIO = 0.2
OVERLAP_THRESHOLD = 0.5
OVERLAP_MIN_COUNT = 5


@dataclass(frozen=True)
class TranscriptSegment:
    """One finalized segment from a transcription service."""
    speaker: Optional[str]
    text: str
    start_time: Optional[float] = None  # Seconds from recording start
    end_time: Optional[float] = None
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TranscriptSegment":
        """Create from a dictionary using snake_case or camelCase keys."""
        def pick(*keys):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        speaker = pick("speaker")
        return cls(
            speaker=str(speaker) if speaker is not None else None,
            text=str(pick("text") or ""),
            start_time=_as_float(pick("start_time", "startTime", "start")),
            end_time=_as_float(pick("end_time", "endTime", "end")),
            confidence=_as_float(pick("confidence")),
        )

    def to_dict(self) -> dict:
        return {
            "speaker": self.speaker,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "confidence": self.confidence,
        }


def _as_float(value) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class SpeakerStats:
    """Aggregate activity for one speaker label in one stream."""
    label: str
    source: str
    total_duration: float = 0.0
    segment_count: int = 0
    average_confidence: float = 0.0
    first_appearance: Optional[float] = None
    last_appearance: Optional[float] = None
    phrases: List[str] = field(default_factory=list)


@dataclass
class SpeakerMappingResult:
    """Role mappings for both streams plus the signals behind the confidence."""
    microphone_mapping: Dict[str, str]
    system_audio_mapping: Dict[str, str]
    confidence: float
    analysis_details: dict

    def mapping_for(self, source: str) -> Dict[str, str]:
        return self.microphone_mapping if source == MICROPHONE else self.system_audio_mapping

    def to_dict(self) -> dict:
        return {
            "microphone_mapping": dict(self.microphone_mapping),
            "system_audio_mapping": dict(self.system_audio_mapping),
            "confidence": self.confidence,
            "analysis_details": dict(self.analysis_details),
        }


def speaker_label(segment: TranscriptSegment) -> str:
    return segment.speaker or UNKNOWN_LABEL


def _segment_text(segment) -> str:
    text = getattr(segment, "text", None)
    return text if isinstance(text, str) else ""


def text_similarity(text1: str, text2: str) -> float:
    """
    Word-set Jaccard similarity of two transcript texts.

    Identical (case-insensitive) texts score 1.0; an empty side scores 0.0.
    """
    s1 = (text1 or "").lower().strip()
    s2 = (text2 or "").lower().strip()

    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    words1 = set(s1.split())
    words2 = set(s2.split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def extract_speaker_stats(segments: Iterable[TranscriptSegment], source: str) -> Dict[str, SpeakerStats]:
    """Group segments by label and accumulate per-label activity."""
    speakers: Dict[str, SpeakerStats] = {}

    for segment in segments:
        label = speaker_label(segment)
        stats = speakers.get(label)
        if stats is None:
            stats = SpeakerStats(label=label, source=source)
            speakers[label] = stats

        stats.segment_count += 1

        start, end = segment.start_time, segment.end_time
        if start is not None and end is not None:
            stats.total_duration += end - start

        if segment.confidence is not None:
            stats.average_confidence = (
                stats.average_confidence * (stats.segment_count - 1) + segment.confidence
            ) / stats.segment_count

        if start is not None and (stats.first_appearance is None or start < stats.first_appearance):
            stats.first_appearance = start
        if end is not None and (stats.last_appearance is None or end > stats.last_appearance):
            stats.last_appearance = end

        text = _segment_text(segment)
        if len(text) > MIN_PHRASE_LENGTH:
            stats.phrases.append(text.lower().strip())

    return speakers


def rank_speakers(speakers: Dict[str, SpeakerStats]) -> List[SpeakerStats]:
    """Most active first: total duration, then segment count."""
    return sorted(
        speakers.values(),
        key=lambda s: (s.total_duration, s.segment_count),
        reverse=True
    )


# --- Role assignment strategies ---

class RoleAssignmentStrategy(ABC):
    """
    Policy that turns per-label statistics into roles for one stream.

    Subclasses are registered with @register_strategy and selected by
    STRATEGY_ID (config: speaker_mapping.strategy).
    """

    STRATEGY_ID: str = "base"

    @abstractmethod
    def assign(
        self,
        speakers: Dict[str, SpeakerStats],
        segments: Sequence[TranscriptSegment],
        source: str
    ) -> Dict[str, str]:
        """
        Build the label -> role mapping for one stream.

        Args:
            speakers: Stats keyed by label (from extract_speaker_stats)
            segments: The stream's segments, in order
            source: MICROPHONE or SYSTEM

        Returns:
            Mapping from every original label to a role
        """
        pass


_strategy_registry: Dict[str, Type[RoleAssignmentStrategy]] = {}


def register_strategy(strategy_class: Type[RoleAssignmentStrategy]) -> Type[RoleAssignmentStrategy]:
    """Register a strategy class by its STRATEGY_ID (usable as a decorator)."""
    _strategy_registry[strategy_class.STRATEGY_ID] = strategy_class
    return strategy_class


def get_available_strategies() -> List[str]:
    return list(_strategy_registry.keys())


def create_strategy(strategy_id: str) -> RoleAssignmentStrategy:
    """Instantiate a registered strategy. Raises ValueError for unknown ids."""
    if strategy_id not in _strategy_registry:
        available = list(_strategy_registry.keys())
        raise ValueError(f"Unknown speaker mapping strategy '{strategy_id}'. Available: {available}")
    return _strategy_registry[strategy_id]()


@register_strategy
class DurationRankStrategy(RoleAssignmentStrategy):
    """
    The most active microphone speaker is the local user (interviewer); the
    most active loopback speaker is the remote party (interviewee). The
    runner-up gets the other role and everyone else is unknown.
    """

    STRATEGY_ID = "duration_rank"

    ROLE_ORDER = {
        MICROPHONE: (INTERVIEWER, INTERVIEWEE),
        SYSTEM: (INTERVIEWEE, INTERVIEWER),
    }

    def assign(self, speakers, segments, source):
        roles = self.ROLE_ORDER.get(source, self.ROLE_ORDER[MICROPHONE])
        mapping: Dict[str, str] = {}

        for rank, stats in enumerate(rank_speakers(speakers)):
            mapping[stats.label] = roles[rank] if rank < len(roles) else UNKNOWN_ROLE

        # No labeled speakers at all but the stream still produced segments
        if not mapping and segments:
            mapping[UNKNOWN_LABEL] = roles[0]

        return mapping


@register_strategy
class FixedRoleStrategy(RoleAssignmentStrategy):
    """Every microphone label is the interviewer, every loopback label the interviewee."""

    STRATEGY_ID = "fixed_role"

    def assign(self, speakers, segments, source):
        role = INTERVIEWER if source == MICROPHONE else INTERVIEWEE
        mapping = {label: role for label in speakers}
        if not mapping and segments:
            mapping[UNKNOWN_LABEL] = role
        return mapping


# --- Mapper ---

class SpeakerMapper:
    """
    Maps per-stream speaker labels to interviewer / interviewee roles.

    Usage:
        mapper = SpeakerMapper()
        result = mapper.map_speakers(mic_segments, system_segments)
        role = mapper.normalize_speaker_label("Speaker A", "microphone", result)
    """

    def __init__(
        self,
        strategy: Optional[RoleAssignmentStrategy] = None,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        echo_delay: float = ECHO_DELAY,
        echo_ratio: float = ECHO_RATIO,
        overlap_threshold: float = OVERLAP_THRESHOLD,
        overlap_min_count: int = OVERLAP_MIN_COUNT,
    ):
        self.strategy = strategy or DurationRankStrategy()
        self.similarity_threshold = similarity_threshold
        self.echo_delay = echo_delay
        self.echo_ratio = echo_ratio
        self.overlap_threshold = overlap_threshold
        self.overlap_min_count = overlap_min_count

    @classmethod
    def from_config(cls) -> "SpeakerMapper":
        """Build a mapper from the speaker_mapping config section."""
        section = ConfigManager.get_config_section('speaker_mapping')
        strategy_id = section.get('strategy') or DurationRankStrategy.STRATEGY_ID
        return cls(
            strategy=create_strategy(strategy_id),
            similarity_threshold=section.get('similarity_threshold', SIMILARITY_THRESHOLD),
            echo_delay=section.get('echo_delay', ECHO_DELAY),
            echo_ratio=section.get('echo_ratio', ECHO_RATIO),
            overlap_threshold=section.get('overlap_threshold', OVERLAP_THRESHOLD),
            overlap_min_count=section.get('overlap_min_count', OVERLAP_MIN_COUNT),
        )

    def map_speakers(
        self,
        mic_segments: Optional[Sequence[TranscriptSegment]],
        system_segments: Optional[Sequence[TranscriptSegment]]
    ) -> SpeakerMappingResult:
        """Analyze both finalized transcripts and return the role mappings."""
        mic_segments = self._coerce(mic_segments)
        system_segments = self._coerce(system_segments)

        log_debug(f"[SpeakerMapper] Analyzing {len(mic_segments)} mic segments "
                  f"and {len(system_segments)} system segments")

        mic_speakers = extract_speaker_stats(mic_segments, MICROPHONE)
        system_speakers = extract_speaker_stats(system_segments, SYSTEM)

        log_debug(f"[SpeakerMapper] Found speakers - Mic: {list(mic_speakers)}, "
                  f"System: {list(system_speakers)}")

        echo_count = self.count_echoes(mic_segments, system_segments)
        echo_detected = echo_count > min(len(mic_segments), len(system_segments)) * self.echo_ratio

        overlap_count = self.count_overlaps(mic_segments, system_segments)
        overlap_detected = overlap_count > self.overlap_min_count

        microphone_mapping = self.strategy.assign(mic_speakers, mic_segments, MICROPHONE)
        system_audio_mapping = self.strategy.assign(system_speakers, system_segments, SYSTEM)

        total_segments = len(mic_segments) + len(system_segments)
        confidence = self.calculate_confidence(
            len(mic_speakers),
            len(system_speakers),
            total_segments,
            echo_detected,
            overlap_detected
        )

        return SpeakerMappingResult(
            microphone_mapping=microphone_mapping,
            system_audio_mapping=system_audio_mapping,
            confidence=confidence,
            analysis_details={
                "microphone_speakers": list(mic_speakers),
                "system_audio_speakers": list(system_speakers),
                "overlap_detected": overlap_detected,
                "echo_detected": echo_detected,
                "total_segments": total_segments,
                "echo_count": echo_count,
                "overlap_count": overlap_count,
            },
        )

    def is_echo(self, mic_segment: TranscriptSegment, system_segment: TranscriptSegment) -> bool:
        """System segment repeats the mic segment and starts just after it."""
        if mic_segment.start_time is None or system_segment.start_time is None:
            return False
        delay = system_segment.start_time - mic_segment.start_time
        if not 0 < delay < self.echo_delay:
            return False
        similarity = text_similarity(_segment_text(mic_segment), _segment_text(system_segment))
        return similarity >= self.similarity_threshold

    def count_echoes(self, mic_segments, system_segments) -> int:
        return sum(
            1
            for mic_seg in mic_segments
            for sys_seg in system_segments
            if self.is_echo(mic_seg, sys_seg)
        )

    def count_overlaps(self, mic_segments, system_segments) -> int:
        """Pairs whose time ranges intersect by more than overlap_threshold."""
        timed_system = [
            s for s in system_segments
            if s.start_time is not None and s.end_time is not None
        ]
        count = 0
        for mic_seg in mic_segments:
            if mic_seg.start_time is None or mic_seg.end_time is None:
                continue
            for sys_seg in timed_system:
                overlap = (min(mic_seg.end_time, sys_seg.end_time)
                           - max(mic_seg.start_time, sys_seg.start_time))
                if overlap > self.overlap_threshold:
                    count += 1
        return count

    @staticmethod
    def calculate_confidence(
        mic_speaker_count: int,
        system_speaker_count: int,
        total_segments: int,
        echo_detected: bool,
        overlap_detected: bool
    ) -> float:
        """Heuristic trust score for a mapping, clamped to [0.1, 1.0]."""
        confidence = 0.5

        if total_segments >= 20:
            confidence += 0.15
        elif total_segments >= 10:
            confidence += 0.1
        elif total_segments >= 5:
            confidence += 0.05

        if mic_speaker_count >= 1 and system_speaker_count >= 1:
            confidence += 0.15

        # Two speakers on each side is the clean two-party case
        if mic_speaker_count == 2 and system_speaker_count == 2:
            confidence += 0.1

        if echo_detected:
            confidence -= 0.1
        if overlap_detected:
            confidence -= 0.05

        return max(0.1, min(1.0, round(confidence, 10)))

    @staticmethod
    def normalize_speaker_label(label: Optional[str], source: str, result: SpeakerMappingResult) -> str:
        """Role for a label in the given stream, or 'unknown'."""
        mapping = result.mapping_for(source)
        return mapping.get(label or UNKNOWN_LABEL, UNKNOWN_ROLE)

    @staticmethod
    def _coerce(segments) -> List[TranscriptSegment]:
        """Accept TranscriptSegment objects or dicts; skip anything else."""
        if not segments:
            return []
        coerced = []
        for segment in segments:
            if isinstance(segment, TranscriptSegment):
                coerced.append(segment)
            elif isinstance(segment, dict):
                coerced.append(TranscriptSegment.from_dict(segment))
        return coerced
