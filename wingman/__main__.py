#!/usr/bin/env python3
"""
Main entry point for the Wingman interview session engine.
Allows running the package with: python -m wingman
"""
import asyncio
import sys
import threading
import uuid

from .config import get_config, SUPPORTED_INTERVIEW_TYPES
from .utils import setup_logging
from . import SessionController
from .interview.events import EventType
from .interview.models import InterviewSession
from .interview.services import Collaborators


def build_collaborators(config, use_tts: bool) -> Collaborators:
    """Production collaborators: PyAudio microphone, Google speech, GCS and the web API."""
    from .infrastructure.api import WingmanApiClient
    from .infrastructure.llm import VertexRestClient
    from .infrastructure.media import PyAudioMediaDevices
    from .infrastructure.speech import GoogleSpeechSynthesizer, GoogleSpeechTranscriber, SubprocessAudioPlayer
    from .infrastructure.storage import GcsObjectStorage
    from .interview.questions import GeminiQuestionGenerator

    llm = VertexRestClient(
        project=config.google_cloud_project,
        location=config.vertex_location,
        model=config.model_name,
        credentials_json=config.google_application_credentials,
    )
    api = WingmanApiClient(config.api_base_url, api_key=config.api_key)

    return Collaborators(
        devices=PyAudioMediaDevices(camera_index=config.camera_index),
        question_generator=GeminiQuestionGenerator(llm, job_role=config.job_role, company=config.company),
        transcriber=GoogleSpeechTranscriber(config.language_code, config.enable_diarization),
        storage=GcsObjectStorage(config.storage_bucket),
        analysis_trigger=api,
        results_store=api,
        feedback=api,
        synthesizer=GoogleSpeechSynthesizer(config.tts_voice, config.language_code) if use_tts else None,
        player=SubprocessAudioPlayer() if use_tts else None,
        status_sink=api,
        frame_analyzer=api if config.enable_frame_analysis else None,
    )


def _read_line_in_background() -> "asyncio.Future":
    """Read one stdin line on a daemon thread so a timed-out session can exit."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def reader():
        line = sys.stdin.readline()
        loop.call_soon_threadsafe(lambda: future.done() or future.set_result(line))

    threading.Thread(target=reader, daemon=True).start()
    return future


async def wait_for_answer(controller: SessionController) -> bool:
    """Record until Enter is pressed. Typing q ends the interview."""
    remaining = controller.timer.remaining()
    print(f"🎙️  Answer now ({remaining / 60:.0f} min left). Press Enter when done, or q + Enter to finish.")
    line = await _read_line_in_background()
    return line.strip().lower() not in ("q", "quit", "end")



def main():
    """Command-line interface for one interview session."""

    # Load configuration from environment
    try:
        config = get_config()
    except ValueError as e:
        print(f"❌ Configuration Error: {e}")
        sys.exit(1)

    if not config.storage_bucket:
        print("❌ Configuration Error: set GOOGLE_CLOUD_BUCKET_NAME for recording uploads")
        sys.exit(1)

    # TTS configuration with explicit flags taking precedence
    explicit_tts = "--tts" in sys.argv or "--speech" in sys.argv
    explicit_text = "--text" in sys.argv or "--no-tts" in sys.argv

    if explicit_text:
        use_tts = False
    elif explicit_tts:
        use_tts = True
    else:
        use_tts = config.enable_tts

    session_id = str(uuid.uuid4())
    for arg in sys.argv:
        if arg.startswith("--duration="):
            try:
                config.duration_minutes = float(arg.split("=")[1])
                if config.duration_minutes <= 0:
                    raise ValueError
            except (ValueError, IndexError):
                print("❌ Invalid duration. Use --duration=MINUTES, e.g. --duration=30")
                sys.exit(1)
        elif arg.startswith("--type="):
            config.interview_type = arg.split("=", 1)[1]
            if config.interview_type not in SUPPORTED_INTERVIEW_TYPES:
                print(f"❌ Unknown interview type. Use one of: {', '.join(SUPPORTED_INTERVIEW_TYPES)}")
                sys.exit(1)
        elif arg.startswith("--difficulty="):
            config.difficulty = arg.split("=", 1)[1]
        elif arg.startswith("--session="):
            session_id = arg.split("=", 1)[1]
        elif arg == "--recording-only":
            config.is_conversational = False
        elif arg == "--segments":
            config.segment_per_answer = True
        elif arg == "--no-frames":
            config.enable_frame_analysis = False

    log_path = setup_logging(config.log_file, config.log_level)

    if use_tts:
        print("🔊 TTS Mode: the interviewer will speak questions aloud (default)")
        print("   (Use --text or --no-tts to disable speech)")
    else:
        print("📝 Text Mode: questions will be displayed as text only")
    print(f"🎯 {config.interview_type} interview, {config.difficulty} difficulty, "
          f"{config.duration_minutes:.0f} minutes")
    print(f"📄 Detailed log: {log_path}")

    session = InterviewSession(
        session_id=session_id,
        interview_type=config.interview_type,
        difficulty=config.difficulty,
        duration_seconds=config.duration_seconds,
        is_conversational=config.is_conversational,
        job_role=config.job_role,
        company=config.company,
        segment_per_answer=config.segment_per_answer,
    )
    controller = SessionController(
        session,
        build_collaborators(config, use_tts),
        config=config,
        on_progress=lambda message: print(f"⏳ {message}"),
    )
    controller.event_bus.subscribe(
        EventType.QUESTION_ASKED, lambda event: print(f"\n🤖 Interviewer: {event.data['question']}"),
    )
    controller.event_bus.subscribe(
        EventType.ANSWER_TRANSCRIBED, lambda event: print(f"👤 You: {event.data['transcript']}"),
    )

    async def run_session():
        try:
            outcome = await controller.run(wait_for_answer)
        finally:
            await controller.wait_background()
        return outcome

    try:
        outcome = asyncio.run(run_session())
    except KeyboardInterrupt:
        print("\n⏹️  Interview interrupted")
        sys.exit(130)
    except Exception as e:
        print(f"❌ Session failed: {e}")
        sys.exit(1)

    print(f"\n✅ Session {outcome.session_id}: {outcome.status.value} ({outcome.reason})")
    if outcome.analysis:
        score = outcome.analysis["overall_score"]
        print(f"📊 Overall score: {score['overall_score']:.2f} (grade {score['grade'] or 'n/a'})")
    if outcome.frames_analyzed:
        print(f"🖼️  {outcome.frames_analyzed} camera frames analyzed")
    if not outcome.analysis and not outcome.has_video:
        print("⚠️  Recording was not uploaded; only the transcript was saved.")


if __name__ == "__main__":
    main()
