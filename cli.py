"""
Command Line Interface for ExamScribe AI
========================================

This module provides the command-line interface for turning consultation
recordings or transcripts into clinical notes, and for scoring an AI note
against the clinician's.

Usage:
------
    # Transcribe a recording (speaker roles + corrected terms)
    examscribe transcribe visit.m4a

    # Full analysis from audio
    examscribe analyze visit.m4a

    # Analysis from a transcript
    examscribe analyze --text "Bệnh nhân: Tôi đau bụng 3 ngày..."
    examscribe analyze --file transcript.txt --json

    # Compare AI output with the clinician's record
    examscribe compare --ai ai.json --doctor doctor.json

    # Offline run with scripted models
    examscribe --mock analyze --text "..."

Exit codes: 0 on success, 1 on error, 130 when interrupted.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from config import get_settings, setup_logging
from core.pipeline import ExaminationPipeline, create_pipeline
from exceptions import ExamScribeError, NoteValidationError
from models import (
    AudioProcessingResult,
    ClinicalNoteResult,
    ComparisonResult,
    ProcessingStatus,
    StructuredNote,
)


# ANSI colors for terminal output
class Colors:
    """ANSI color codes for pretty terminal output."""
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def colorize(text: str, color: str) -> str:
    """Add color to text if terminal supports it."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.ENDC}"
    return text


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser.

    Global flags go before the subcommand: `examscribe --json analyze ...`.
    """
    parser = argparse.ArgumentParser(
        prog="examscribe",
        description="Turn clinical consultations into SOAP notes, ICD-10 codes and advice",
        epilog="Example: examscribe analyze visit.m4a --json",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument("--json", action="store_true", help="Output result as JSON")
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use scripted models and a canned transcript (no Ollama or network)"
    )
    parser.add_argument("--ollama-model", type=str, help="Ollama model name (overrides config)")
    parser.add_argument("--quiet", "-q", action="store_true", help="Minimal output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output with debug info")

    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe = subparsers.add_parser("transcribe", help="Transcribe a recording")
    transcribe.add_argument("audio_file", help="Path to the audio file")

    analyze = subparsers.add_parser("analyze", help="Generate a clinical note")
    analyze.add_argument("audio_file", nargs="?", help="Path to the audio file")
    source = analyze.add_mutually_exclusive_group()
    source.add_argument("--text", "-t", type=str, help="Transcript text")
    source.add_argument("--file", "-f", type=str, help="Path to a transcript text file")

    compare = subparsers.add_parser("compare", help="Score an AI result against the clinician's")
    compare.add_argument(
        "--ai", required=True,
        help='JSON file with {"soap": {...}, "icd_codes": [...]} from the AI'
    )
    compare.add_argument(
        "--doctor", required=True,
        help='JSON file with {"soap": {...}, "icd_codes": [...]} from the clinician'
    )

    return parser


def setup_logging_for_cli(verbose: bool, quiet: bool) -> None:
    """Configure logging from settings; CLI flags override the level."""
    level = None
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    setup_logging(get_settings(), level=level)


def progress_callback(status: ProcessingStatus, message: str, progress: int) -> None:
    """Print pipeline progress updates."""
    status_colors = {
        ProcessingStatus.TRANSCRIBING: Colors.BLUE,
        ProcessingStatus.ATTRIBUTING: Colors.BLUE,
        ProcessingStatus.NORMALIZING: Colors.CYAN,
        ProcessingStatus.COMPLETED: Colors.GREEN,
        ProcessingStatus.FAILED: Colors.RED,
    }

    color = status_colors.get(status, Colors.ENDC)
    status_str = f"[{status.value.upper():^12}]"

    print(f"{colorize(status_str, color)} {progress:3d}% {message}")


def load_result_file(path: str) -> Tuple[StructuredNote, List[str]]:
    """
    Load a note and its codes from a JSON file.

    Accepts `{"soap": {...}, "icd_codes": [...]}` or a bare note object.
    """
    try:
        data: Dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise NoteValidationError(f"Cannot read result file {path}: {e}")

    soap = data.get("soap", data)
    return StructuredNote.model_validate(soap), list(data.get("icd_codes", []))


# =============================================================================
# Output
# =============================================================================

def print_json(model) -> None:
    print(model.model_dump_json(indent=2))


def print_transcript(result: AudioProcessingResult) -> None:
    print(colorize("\n─── TRANSCRIPT ───\n", Colors.HEADER))
    print(result.transcript or "(no speech detected)")
    if result.transcription:
        print(colorize(
            f"\n[Duration: {result.transcription.duration_seconds:.1f}s | "
            f"Language: {result.transcription.language} | "
            f"Segments: {len(result.segments)}]",
            Colors.CYAN
        ))


def print_note_result(result: ClinicalNoteResult) -> None:
    print(result.soap.to_formatted_string())

    print(colorize("\n─── ICD-10 ───\n", Colors.HEADER))
    for code in result.icd_codes:
        print(f"  • {code}")

    print(colorize("\n─── ADVICE ───\n", Colors.HEADER))
    print(result.medical_advice)
    if result.references:
        print(colorize(f"\nReferences: {', '.join(result.references)}", Colors.CYAN))

    if result.errors:
        print(colorize(f"\nIncomplete stages: {', '.join(result.errors)}", Colors.YELLOW))


def print_comparison(result: ComparisonResult) -> None:
    score_color = Colors.GREEN if result.match_score >= 80 else Colors.YELLOW
    print(colorize(f"\nMatch score: {result.match_score:.0f}/100", score_color + Colors.BOLD))

    print(colorize("\n─── PER SECTION ───\n", Colors.HEADER))
    for field_name, score in result.per_field_score.items():
        print(f"  {field_name:<12} {score:5.0f}")

    overlap = result.code_overlap
    print(colorize("\n─── ICD-10 OVERLAP ───\n", Colors.HEADER))
    print(f"  score:       {overlap.score:.0f}")
    print(f"  matched:     {', '.join(overlap.exact_matches) or '-'}")
    print(f"  AI only:     {', '.join(overlap.ai_only_codes) or '-'}")
    print(f"  doctor only: {', '.join(overlap.doctor_only_codes) or '-'}")

    if result.difference_notes:
        print(colorize("\n─── NOTES ───\n", Colors.HEADER))
        for note in result.difference_notes:
            print(f"  • {note}")


# =============================================================================
# Commands
# =============================================================================

async def _aprocess_audio(pipeline: ExaminationPipeline, path: str, quiet: bool) -> AudioProcessingResult:
    audio_path = Path(path)
    audio_bytes = audio_path.read_bytes()
    callback = None if quiet else progress_callback
    return await pipeline.aprocess_audio(audio_bytes, audio_path.name, progress_callback=callback)


async def run_command(parsed_args: argparse.Namespace, pipeline: ExaminationPipeline) -> None:
    """Dispatch the parsed subcommand."""
    quiet = parsed_args.quiet or parsed_args.json

    if parsed_args.command == "transcribe":
        result = await _aprocess_audio(pipeline, parsed_args.audio_file, quiet)
        if parsed_args.json:
            print_json(result)
        else:
            print_transcript(result)
        return

    if parsed_args.command == "analyze":
        if parsed_args.text is not None:
            transcript = parsed_args.text
        elif parsed_args.file is not None:
            transcript = Path(parsed_args.file).read_text(encoding="utf-8")
        else:
            audio = await _aprocess_audio(pipeline, parsed_args.audio_file, quiet)
            transcript = audio.transcript
            if not quiet:
                print_transcript(audio)

        if not quiet:
            print(colorize("\nGenerating clinical note...\n", Colors.CYAN))
        await pipeline.astartup()
        result = await pipeline.arun_clinical_note_pipeline(transcript)
        if parsed_args.json:
            print_json(result)
        else:
            print_note_result(result)
        return

    if parsed_args.command == "compare":
        ai_note, ai_codes = load_result_file(parsed_args.ai)
        doctor_note, doctor_codes = load_result_file(parsed_args.doctor)
        result = await pipeline.arun_comparison(ai_note, ai_codes, doctor_note, doctor_codes)
        if parsed_args.json:
            print_json(result)
        else:
            print_comparison(result)


def main(args: Optional[List[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        args: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if parsed_args.command == "analyze":
        given = [parsed_args.audio_file, parsed_args.text, parsed_args.file]
        if sum(value is not None for value in given) != 1:
            parser.error("analyze needs exactly one of AUDIO, --text or --file")

    # Apply CLI overrides BEFORE loading settings (get_settings() is cached)
    if parsed_args.ollama_model:
        os.environ["EXAMSCRIBE_OLLAMA_MODEL"] = parsed_args.ollama_model
        get_settings.cache_clear()

    setup_logging_for_cli(parsed_args.verbose, parsed_args.quiet)

    try:
        pipeline = create_pipeline(get_settings(), use_mock=parsed_args.mock)
        asyncio.run(run_command(parsed_args, pipeline))

        if not (parsed_args.quiet or parsed_args.json):
            print(colorize("\n✅ Done!\n", Colors.GREEN))
        return 0

    except ExamScribeError as e:
        print(colorize(f"\n❌ Error: {e.message}", Colors.RED), file=sys.stderr)
        if parsed_args.verbose and e.details:
            print(colorize(f"   Details: {e.details}", Colors.YELLOW), file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print(colorize("\n\n⚠️  Interrupted by user", Colors.YELLOW), file=sys.stderr)
        return 130

    except OSError as e:
        print(colorize(f"\n❌ Error: {e}", Colors.RED), file=sys.stderr)
        return 1

    except Exception as e:
        print(colorize(f"\n❌ Unexpected error: {e}", Colors.RED), file=sys.stderr)
        if parsed_args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
