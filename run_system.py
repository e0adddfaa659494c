#!/usr/bin/env python3
"""
Quran Hifz Trainer Launcher

This script provides an easy way to launch different components of the system.
"""

import sys
import argparse
import subprocess
import logging
import os
from pathlib import Path

# Setup logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

TEST_MODULES = [
    "test_normalization",
    "test_progress_tracker",
    "test_live_matcher",
    "test_verdict_applier",
    "test_session",
    "test_grading",
    "test_api_clients",
    "test_recording",
    "test_notifications",
    "test_auth",
    "test_fastapi_server",
]


def _src_env():
    """Environment with src/ importable by child interpreters."""
    env = os.environ.copy()
    src = str(Path("src").resolve())
    env["PYTHONPATH"] = src + os.pathsep + env["PYTHONPATH"] if env.get("PYTHONPATH") else src
    return env


def run_fastapi_server():
    """Launch the FastAPI backend server."""
    logger.info("Starting FastAPI backend server...")
    try:
        subprocess.run([sys.executable, "-m", "quran_hifz.fastapi_server"], check=True, env=_src_env())
    except subprocess.CalledProcessError as e:
        logger.error(f"Failed to start FastAPI server: {e}")
        return False
    except KeyboardInterrupt:
        logger.info("FastAPI server stopped by user")
    return True


def run_tests():
    """Run the unit tests."""
    logger.info("Running unit tests...")
    try:
        subprocess.run([sys.executable, "-m", "unittest", *TEST_MODULES], check=True, env=_src_env())
        logger.info("All tests passed!")
        return True
    except subprocess.CalledProcessError as e:
        logger.error(f"Tests failed: {e}")
        return False


def demo_session(audio_path, surah_number, range_start, range_end):
    """Grade one recording against every ayah of a range, as a session would."""
    logger.info("Running demo session...")

    demo_code = '''
import logging
import sys

from quran_hifz.api_clients import AlQuranAPIClient
from quran_hifz.grading import RecitationGrader
from quran_hifz.recording import record_file
from quran_hifz.session import HifzSession, SessionState

logging.basicConfig(level=logging.INFO)

audio_path, surah_number, range_start, range_end = sys.argv[1], int(sys.argv[2]), int(sys.argv[3]), int(sys.argv[4])

client = AlQuranAPIClient()
surah = next(s for s in client.fetch_surah_list() if s.number == surah_number)
session = HifzSession(advance_delay=0)
if not session.start(client.fetch_surah_details(surah_number), range_start, range_end, surah=surah):
    print("Empty ayah range")
    sys.exit(1)

grader = RecitationGrader()
audio = record_file(audio_path, mime_type="audio/" + audio_path.rsplit(".", 1)[-1]).to_wav()

while session.state == SessionState.ACTIVE:
    index = session.current_index
    progress = session.current_ayah
    print(f"\\nAyah {progress.ayah.number_in_surah}: {progress.ayah.text}")
    token = session.begin_grading()
    outcome = grader.grade(progress.ayah.text, audio, surah_name=surah.english_name,
                           ayah_number=progress.ayah.number_in_surah)
    result = session.complete_grading(token, outcome)
    print("   " + " ".join(f"{w.text}[{w.status.value}]" for w in session.ayahs[index].words))
    if not result.completed:
        if not session.next_ayah():
            session.end_session()

summary = session.summary()
print("\\n" + "="*50)
print("SESSION SUMMARY")
print("="*50)
print(f"Completed: {summary.completed_ayahs}/{summary.total_ayahs} ayahs")
print(f"Words: {summary.correct_words} correct, {summary.wrong_words} wrong, {summary.revealed_words} revealed")
'''

    try:
        subprocess.run(
            [sys.executable, "-c", demo_code, audio_path, str(surah_number), str(range_start), str(range_end)],
            check=True,
            env=_src_env(),
        )
        return True
    except subprocess.CalledProcessError as e:
        logger.error(f"Demo failed: {e}")
        return False


def main():
    parser = argparse.ArgumentParser(
        description="Quran Hifz Trainer Launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_system.py fastapi                        # Launch API server
  python run_system.py test                           # Run tests
  python run_system.py demo --audio assets/test.wav   # Grade a recording against Al-Ikhlas
        """
    )

    parser.add_argument(
        "component",
        choices=["fastapi", "test", "demo"],
        help="Component to launch"
    )
    parser.add_argument("--audio", default="assets/test.wav", help="Recording used by the demo")
    parser.add_argument("--surah", type=int, default=112, help="Surah used by the demo")
    parser.add_argument("--start", type=int, default=1, help="First ayah used by the demo")
    parser.add_argument("--end", type=int, default=4, help="Last ayah used by the demo")

    args = parser.parse_args()

    # Check if we're in the right directory
    if not Path("src/quran_hifz").exists():
        logger.error("Please run this script from the project root directory")
        sys.exit(1)

    success = False

    if args.component == "fastapi":
        success = run_fastapi_server()
    elif args.component == "test":
        success = run_tests()
    elif args.component == "demo":
        if not Path(args.audio).exists():
            logger.error(f"No recording found at {args.audio}")
            sys.exit(1)
        success = demo_session(args.audio, args.surah, args.start, args.end)

    if not success:
        sys.exit(1)

    logger.info("Operation completed successfully!")


if __name__ == "__main__":
    main()
