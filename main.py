#!/usr/bin/env python3
"""
Command-line entry point for the voice biomarker pipeline.

Runs one check-in end to end:
1. Load a recording (or capture one from the microphone)
2. Voice activity detection and acoustic feature extraction
3. Stress/fatigue scoring, personalized by baseline and calibration
4. Optional semantic fusion and mismatch detection from a transcript
5. Optional self-report to update calibration, or baseline capture

Usage:
    python main.py --audio checkin.wav --transcript "I'm fine, just busy"
    python main.py --record 20 --self-report 30 60
    python main.py --audio baseline.wav --save-baseline

Exit codes:
    0  success
    1  error (missing files, device or pipeline failure)
    2  not enough speech in the recording
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from exceptions import AudioPipelineError, CalibrationError
from scoring.calibration import CalibrationRepository, CheckInSelfReport
from session.check_in import CheckInPipeline
from utils.audio_io import load_audio, save_audio
from utils.config_loader import DEFAULT_CONFIG_PATH, get_nested_config, load_config
from utils.settings_store import SqliteSettingsStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('voice_biomarkers.log'),
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)

EXIT_INSUFFICIENT_SPEECH = 2


def run_check_in(args, config) -> int:
    """
    Execute one check-in from parsed command-line arguments.

    Returns:
        Process exit code
    """
    logger.info("="*80)
    logger.info("VOICE BIOMARKERS - Stress & Fatigue Check-in")
    logger.info("="*80)

    db_path = args.db or get_nested_config(config, 'storage.db_path', 'data/voice_settings.db')
    repository = CalibrationRepository(SqliteSettingsStore(db_path))
    pipeline = CheckInPipeline(config, repository)

    # Audio source
    if args.record:
        logger.info(f"\n[STEP 1/4] Recording {args.record:.0f}s from the microphone...")
        capture = pipeline.capture_factory()
        audio = capture.record(args.record)
        sample_rate = capture.sample_rate
        if args.save_recording:
            save_audio(args.save_recording, audio, sample_rate)
    else:
        logger.info("\n[STEP 1/4] Loading audio...")
        sample_rate = get_nested_config(config, 'audio.sample_rate', 16000)
        audio, sample_rate = load_audio(args.audio, sample_rate=sample_rate)

    if args.save_baseline:
        logger.info("\n[STEP 2/4] Saving voice baseline...")
        baseline = pipeline.save_baseline(audio, sample_rate, prompt_id=args.prompt_id)
        print(json.dumps(baseline.to_dict(), indent=2))
        logger.info("✓ Baseline saved")
        return 0

    logger.info("\n[STEP 2/4] Processing and scoring...")
    result = pipeline.analyze(audio, sample_rate, transcript=args.transcript)

    if result.outcome == 'insufficient_speech':
        logger.warning(result.insufficient.message)
        print(json.dumps(result.to_dict(), indent=2))
        return EXIT_INSUFFICIENT_SPEECH

    if args.transcript:
        logger.info("\n[STEP 3/4] Semantic fusion...")
        asyncio.run(pipeline.resolve_semantic(result.session_id, args.transcript))
    else:
        logger.info("\n[STEP 3/4] No transcript given, acoustic-only metrics are final")

    if args.self_report:
        logger.info("\n[STEP 4/4] Updating calibration from self-report...")
        stress, fatigue = args.self_report
        report = CheckInSelfReport(
            stress_score=stress,
            fatigue_score=fatigue,
            reported_at=datetime.now(timezone.utc).isoformat()
        )
        calibration = pipeline.submit_self_report(report)
        if calibration is not None:
            logger.info(f"✓ Calibration updated ({calibration.sample_count} self-reports)")

    print(json.dumps(result.to_dict(), indent=2))
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Voice Biomarkers - stress and fatigue from a short voice check-in',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a recording
  python main.py --audio checkin.wav

  # Record 30 seconds and compare against what was said
  python main.py --record 30 --transcript "honestly I'm fine"

  # Tell the pipeline how you actually feel (0-100 stress, 0-100 fatigue)
  python main.py --audio checkin.wav --self-report 20 70

  # Store a personal baseline (needs at least 8s of speech)
  python main.py --audio baseline.wav --save-baseline
        """
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        '--audio',
        type=str,
        help='Path to input audio file'
    )
    source.add_argument(
        '--record',
        type=float,
        metavar='SECONDS',
        help='Record from the default microphone for SECONDS'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help='Path to configuration YAML file (default: configs/default.yaml)'
    )
    parser.add_argument(
        '--db',
        type=str,
        default=None,
        help='Settings database path (default: storage.db_path from config)'
    )
    parser.add_argument(
        '--transcript',
        type=str,
        default=None,
        help='What was said, for semantic fusion and mismatch detection'
    )
    parser.add_argument(
        '--self-report',
        type=float,
        nargs=2,
        metavar=('STRESS', 'FATIGUE'),
        default=None,
        help='Self-reported stress and fatigue (0-100) to update calibration'
    )
    parser.add_argument(
        '--save-baseline',
        action='store_true',
        help='Store this recording as the personal voice baseline'
    )
    parser.add_argument(
        '--prompt-id',
        type=str,
        default='default',
        help='Identifier of the baseline reading prompt'
    )
    parser.add_argument(
        '--save-recording',
        type=str,
        default=None,
        help='Write the microphone recording to this WAV file'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate audio path
    if args.audio and not Path(args.audio).exists():
        logger.error(f"Audio file not found: {args.audio}")
        sys.exit(1)

    # Validate config path
    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)

    if args.self_report and not all(0 <= v <= 100 for v in args.self_report):
        logger.error("Self-report values must be within 0-100")
        sys.exit(1)

    config = load_config(config_path)

    try:
        exit_code = run_check_in(args, config)
        sys.exit(exit_code)

    except KeyboardInterrupt:
        logger.warning("\nCheck-in interrupted by user")
        sys.exit(1)

    except CalibrationError as e:
        logger.error(f"✗ {e}")
        sys.exit(1)

    except AudioPipelineError as e:
        logger.error(f"✗ Recording could not be analyzed: {type(e).__name__}: {e}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"\n✗ ERROR: Pipeline failed with exception:")
        logger.error(f"  {type(e).__name__}: {str(e)}")
        logger.exception("Full traceback:")
        sys.exit(1)


if __name__ == '__main__':
    main()
