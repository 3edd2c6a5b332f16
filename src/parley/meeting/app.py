"""
Parley command line.

Usage:
    parley record --title "Standup"
    parley import recording.wav
    parley list
    parley show <meeting-id>
    parley summarize <meeting-id>
    parley speakers
    parley enroll "Callum" sample.wav --role Engineer --group Platform
"""

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

from ..engines import load_engine
from ..logger import ParleyLogger, log_exception
from ..utils import ConfigManager, TextProcessor
from .diarization import SpeakerDiarizer
from .enrollment import EnrollmentError, SpeakerDirectory
from .history import MeetingHistory
from .models import TranscriptUpdate, format_timestamp
from .summarizer import SummarizationError, SummarizerClient

logger = logging.getLogger(__name__)


def _history() -> MeetingHistory:
    return MeetingHistory(ConfigManager.get_config_value('meeting_options', 'storage_folder'))


def _directory() -> SpeakerDirectory:
    speaker = ConfigManager.get_config_section('speaker_options')
    return SpeakerDirectory(
        speaker.get('enrolled_speakers_file'),
        sample_rate=ConfigManager.get_config_value('meeting_options', 'sample_rate') or 16000,
        target_peak=speaker.get('target_peak', 0.9),
        max_gain=speaker.get('max_gain', 100.0),
    )


def _diarizer():
    diarizer = SpeakerDiarizer(device=ConfigManager.get_config_value('speaker_options', 'diarization_device') or "cpu")
    if not diarizer.is_available():
        print("Speaker identification off (install pyannote.audio and set HF_TOKEN to enable)")
        return None
    return diarizer


def _summarizer():
    section = ConfigManager.get_config_section('summary_options')
    if not section.get('enabled', True):
        return None
    if not os.getenv("ANTHROPIC_API_KEY"):
        print("Summaries off (set ANTHROPIC_API_KEY to enable)")
        return None
    return SummarizerClient(model=section.get('model'), max_retries=section.get('max_retries'))


def _print_update(update: TranscriptUpdate):
    if update.meeting_completed:
        print("\nMeeting processing complete.")
    elif update.is_final:
        print(f"[{update.speaker_name}] {update.text}")


def cmd_record(args) -> int:
    from .capture import AudioCapture
    from .manager import MeetingError, MeetingPipeline, PipelineConfig

    config = PipelineConfig.from_config()
    print("Loading transcription model...")
    transcriber = load_engine(ConfigManager.get_config_section('model_options'))

    directory = _directory()
    diarizer = _diarizer()
    if diarizer is not None:
        diarizer.load_known_speakers(directory.profiles())

    pipeline = MeetingPipeline(
        capture=AudioCapture(sample_rate=config.sample_rate),
        transcriber=transcriber,
        diarizer=diarizer,
        directory=directory,
        summarizer=_summarizer(),
        history=_history(),
        config=config,
        text_processor=TextProcessor.from_config(),
    )
    pipeline.add_listener(_print_update)

    try:
        meeting = pipeline.start_meeting(args.title)
    except MeetingError as e:
        print(f"Could not start meeting: {e}")
        pipeline.close()
        return 1

    print(f"Recording '{meeting.title}'. Press Ctrl+C to stop.")
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nStopping...")

    try:
        meeting = pipeline.stop_meeting().result()
    finally:
        pipeline.close()

    print(f"Saved meeting {meeting.id} ({len(meeting.segments)} segments, "
          f"{format_timestamp(meeting.duration)})")
    return 0


def cmd_import(args) -> int:
    from .importer import BatchImporter
    from .manager import PipelineConfig

    config = PipelineConfig.from_config()
    print("Loading transcription model...")
    transcriber = load_engine(ConfigManager.get_config_section('model_options'))

    importer = BatchImporter(
        transcriber=transcriber,
        diarizer=_diarizer(),
        directory=_directory(),
        history=_history(),
        config=config,
        window_seconds=ConfigManager.get_config_value('import_options', 'window_seconds') or 30.0,
        text_processor=TextProcessor.from_config(),
    )
    meeting = importer.import_file(args.file, title=args.title)
    print(f"Imported meeting {meeting.id} ({len(meeting.segments)} segments)")
    return 0


def cmd_list(args) -> int:
    meetings = _history().load_all()
    if not meetings:
        print("No meetings recorded yet.")
        return 0
    for meeting in meetings:
        print(f"{meeting.id}  {meeting.date.strftime('%Y-%m-%d %H:%M')}  "
              f"{format_timestamp(meeting.duration):>8}  {meeting.status.value:<10}  {meeting.title}")
    return 0


def cmd_show(args) -> int:
    meeting = _history().load(args.meeting_id)
    if meeting is None:
        print(f"Meeting {args.meeting_id} not found")
        return 1
    print(meeting.generate_markdown())
    return 0


def cmd_summarize(args) -> int:
    history = _history()
    meeting = history.load(args.meeting_id)
    if meeting is None:
        print(f"Meeting {args.meeting_id} not found")
        return 1

    summarizer = _summarizer()
    if summarizer is None:
        return 1

    print("Generating summary...")
    try:
        summary = summarizer.summarize(meeting, status_callback=print)
    except SummarizationError as e:
        print(f"Summary failed: {e}")
        return 1

    meeting.summary = summary.summary
    meeting.action_items = summary.action_items
    history.save(meeting)
    print(meeting.generate_markdown(include_timestamps=False))
    return 0


def cmd_speakers(args) -> int:
    groups = _directory().grouped_profiles()
    if not groups:
        print("No speakers enrolled yet.")
        return 0
    for group, profiles in groups.items():
        print(f"{group}:")
        for profile in profiles:
            role = f" ({profile.role})" if profile.role else ""
            print(f"  - {profile.name}{role}  [{profile.id}]")
    return 0


def cmd_enroll(args) -> int:
    from .importer import load_audio_file

    diarizer = _diarizer()
    if diarizer is None:
        return 1

    print(f"Loading audio from: {args.file}")
    audio = load_audio_file(args.file)
    print(f"Audio duration: {len(audio) / 16000:.1f} seconds")

    try:
        profile = _directory().enroll(args.name, audio, diarizer, role=args.role, group_name=args.group)
    except EnrollmentError as e:
        print(f"Failed to enroll '{args.name}': {e}")
        return 1

    print(f"Successfully enrolled '{profile.name}' ({profile.id})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="parley", description="Live meeting transcription")
    parser.add_argument("--config", help="Path to a config.yaml (defaults to $PARLEY_HOME/config.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)

    record = sub.add_parser("record", help="Record and transcribe a live meeting")
    record.add_argument("--title", default="Meeting")
    record.set_defaults(func=cmd_record)

    imp = sub.add_parser("import", help="Transcribe a recorded meeting file")
    imp.add_argument("file")
    imp.add_argument("--title")
    imp.set_defaults(func=cmd_import)

    sub.add_parser("list", help="List stored meetings").set_defaults(func=cmd_list)

    show = sub.add_parser("show", help="Print a meeting as markdown")
    show.add_argument("meeting_id")
    show.set_defaults(func=cmd_show)

    summarize = sub.add_parser("summarize", help="(Re)generate a meeting summary")
    summarize.add_argument("meeting_id")
    summarize.set_defaults(func=cmd_summarize)

    sub.add_parser("speakers", help="List enrolled speakers").set_defaults(func=cmd_speakers)

    enroll = sub.add_parser("enroll", help="Enroll a speaker from a voice sample")
    enroll.add_argument("name")
    enroll.add_argument("file")
    enroll.add_argument("--role", default="")
    enroll.add_argument("--group", default="")
    enroll.set_defaults(func=cmd_enroll)

    return parser


def main(argv=None) -> int:
    load_dotenv(Path.cwd() / ".env")
    args = build_parser().parse_args(argv)

    ConfigManager.reset()
    ConfigManager.initialize(config_path=args.config)
    ParleyLogger.get_logger(console=bool(ConfigManager.get_config_value('misc', 'print_to_terminal')))

    try:
        return args.func(args)
    except Exception as e:
        log_exception(e, f"in '{args.command}' command")
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
