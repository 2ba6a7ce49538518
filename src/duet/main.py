"""
duet command line.

Usage:
    python -m duet record --duration 60
    python -m duet record --mono --output-dir recordings
    python -m duet map-speakers mic.json system.json --transcript meeting.md
    python -m duet devices
"""

import argparse
import json
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

from .utils import ConfigManager


def load_segments(path: Path) -> list:
    """Read transcript segments from a JSON list or {"segments": [...]}."""
    from .meeting.speakers import TranscriptSegment

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("segments", [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of segments")
    return [TranscriptSegment.from_dict(item) for item in data if isinstance(item, dict)]


def format_level(source: str, level) -> str:
    bar = "#" * int(level.rms / 5)
    return f"{source:<10} {bar:<20} {level.rms:5.1f} rms {level.db:6.1f} dB"


def cmd_record(args) -> int:
    from .meeting.merger import AudioMerger
    from .meeting.session import RecordingSession

    sample_rate = ConfigManager.get_config_value('capture_options', 'sample_rate') or 16000
    merger = AudioMerger(
        output_dir=args.output_dir,
        output_sample_rate=sample_rate,
        output_channels=1 if args.mono else None,
    )
    if args.mic_gain is not None or args.system_gain is not None:
        merger.set_gains(
            args.mic_gain if args.mic_gain is not None else merger.options.microphone_gain,
            args.system_gain if args.system_gain is not None else merger.options.system_audio_gain,
        )

    session = RecordingSession.with_device_capture(merger=merger)
    if not session.start():
        print("Error: could not start audio capture", file=sys.stderr)
        return 1

    if args.duration:
        print(f"Recording for {args.duration:.0f}s (Ctrl+C to stop early)")
    else:
        print("Recording... press Ctrl+C to stop")

    start_time = time.time()
    try:
        while not args.duration or time.time() - start_time < args.duration:
            time.sleep(0.5)
            if args.levels:
                for source, level in session.levels().items():
                    print(format_level(source, level))
    except KeyboardInterrupt:
        print()

    result = session.stop()
    if result is None:
        if merger.last_error is not None:
            print(f"Error: failed to write recording: {merger.last_error}", file=sys.stderr)
        else:
            print("Nothing was recorded", file=sys.stderr)
        return 1

    print(f"Saved {result.duration:.1f}s ({result.channels}ch, {result.sample_rate}Hz) to: {result.file_path}")
    return 0


def cmd_map_speakers(args) -> int:
    from .meeting.speakers import SpeakerMapper, create_strategy
    from .meeting.transcript import TranscriptWriter

    try:
        mic_segments = load_segments(args.mic)
        system_segments = load_segments(args.system)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    mapper = SpeakerMapper.from_config()
    if args.strategy:
        mapper.strategy = create_strategy(args.strategy)

    result = mapper.map_speakers(mic_segments, system_segments)
    print(json.dumps(result.to_dict(), indent=2))

    if args.transcript:
        out = Path(args.transcript)
        writer = TranscriptWriter(output_dir=out.parent, meeting_name=args.name, mapper=mapper)
        writer.add_recording(mic_segments, system_segments, result)
        writer.save(out.name)
    return 0


def cmd_devices(args) -> int:
    from .meeting.capture import AudioCapture

    try:
        devices = AudioCapture.list_devices()
    except Exception as e:
        print(f"Error: could not query audio devices: {e}", file=sys.stderr)
        return 1

    for dev in devices:
        print(f"[{dev['index']:>2}] {dev['name']} "
              f"({dev['max_input_channels']}ch, {int(dev['default_samplerate'])}Hz)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="duet",
        description="Record microphone + system audio and attribute speakers"
    )
    parser.add_argument("--config", help="Path to a config.yaml (default: ./config.yaml)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    record = subparsers.add_parser("record", help="Record and merge both streams into a WAV file")
    record.add_argument("--duration", "-d", type=float, default=0.0,
                        help="Recording duration in seconds (default: until Ctrl+C)")
    record.add_argument("--output-dir", "-o", help="Directory for the merged WAV")
    record.add_argument("--mono", action="store_true", help="Mix both sources into one channel")
    record.add_argument("--mic-gain", type=float, help="Microphone gain (0-2)")
    record.add_argument("--system-gain", type=float, help="System audio gain (0-2)")
    record.add_argument("--levels", action="store_true", help="Print live input levels")
    record.set_defaults(func=cmd_record)

    mapping = subparsers.add_parser("map-speakers", help="Map speaker labels of two transcripts to roles")
    mapping.add_argument("mic", type=Path, help="Microphone transcript segments (JSON)")
    mapping.add_argument("system", type=Path, help="System audio transcript segments (JSON)")
    mapping.add_argument("--strategy", help="Role assignment strategy (duration_rank, fixed_role)")
    mapping.add_argument("--transcript", help="Also write an attributed markdown transcript here")
    mapping.add_argument("--name", help="Meeting name for the transcript title")
    mapping.set_defaults(func=cmd_map_speakers)

    devices = subparsers.add_parser("devices", help="List audio input devices")
    devices.set_defaults(func=cmd_devices)

    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    if args.config:
        ConfigManager.reset()
        ConfigManager.initialize(config_path=args.config)

    try:
        return args.func(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
