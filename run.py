"""
Parley - live meeting transcription with speaker identification.

Entry point for running from a source checkout:

    python run.py record --title "Standup"
"""

import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).parent / "src"))


if __name__ == '__main__':
    load_dotenv(Path(__file__).parent / ".env")
    from parley.meeting.app import main
    sys.exit(main())
