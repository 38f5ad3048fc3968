"""
Command-line interface for EduGrade.

Usage:
    python -m edugrade evaluate --question-paper qp1.jpg qp2.jpg \\
        --student-sheets sheet1.jpg [--answer-key key.pdf] [OPTIONS]
    python -m edugrade history list
    python -m edugrade history show REPORT_ID
    python -m edugrade history delete REPORT_ID
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional
from uuid import UUID

from edugrade.config import get_settings
from edugrade.errors import EvaluationError
from edugrade.models.documents import DocumentGroup
from edugrade.models.report import Report
from edugrade.services.credentials import StaticCredentialProvider
from edugrade.services.document_encoder import read_document
from edugrade.services.evaluation_controller import EvaluationController, build_controller
from edugrade.services.history_store import build_history_store
from edugrade.utils.retry import retry_with_backoff


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="edugrade",
        description="EduGrade CLI - Grade answer sheets with Gemini"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Evaluate command
    evaluate_parser = subparsers.add_parser(
        "evaluate",
        help="Grade student answer sheets against a question paper"
    )
    evaluate_parser.add_argument(
        "--question-paper",
        "-q",
        nargs="+",
        default=[],
        metavar="FILE",
        help="Question paper pages (images or PDF), in page order"
    )
    evaluate_parser.add_argument(
        "--answer-key",
        "-k",
        nargs="+",
        default=[],
        metavar="FILE",
        help="Answer key pages (optional)"
    )
    evaluate_parser.add_argument(
        "--student-sheets",
        "-s",
        nargs="+",
        default=[],
        metavar="FILE",
        help="Student answer sheet pages, in page order"
    )
    evaluate_parser.add_argument(
        "--timeout",
        "-t",
        type=float,
        default=None,
        help="Give up after this many seconds (default: no timeout)"
    )
    evaluate_parser.add_argument(
        "--retries",
        "-r",
        type=int,
        default=0,
        help="Re-run the whole evaluation this many times on retryable failures (default: 0)"
    )
    evaluate_parser.add_argument(
        "--api-key",
        type=str,
        default=None,
        help="Gemini API key (default: GEMINI_API_KEY from env or .env)"
    )
    evaluate_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON"
    )

    # History command
    history_parser = subparsers.add_parser("history", help="Manage stored reports")
    history_sub = history_parser.add_subparsers(dest="history_command", help="History actions")

    list_parser = history_sub.add_parser("list", help="List stored reports, newest first")
    list_parser.add_argument("--json", action="store_true", help="Print as JSON")

    show_parser = history_sub.add_parser("show", help="Show one report")
    show_parser.add_argument("report_id", type=str)
    show_parser.add_argument("--json", action="store_true", help="Print as JSON")

    delete_parser = history_sub.add_parser("delete", help="Delete one report")
    delete_parser.add_argument("report_id", type=str)

    return parser


def format_report(report: Report) -> str:
    """Plain-text rendering of a report for the terminal."""
    info = report.student_info
    lines = [
        f"Report {str(report.id)[:8].upper()}",
        f"Student: {info.name or 'Anonymous'}"
        + (f" (Roll {info.roll_number})" if info.roll_number else ""),
        f"Subject: {info.subject or '-'}",
        f"Score:   {_num(report.total_score)} / {_num(report.max_score)} ({report.percentage}%)",
        "",
    ]
    for grade in report.grades:
        lines.append(
            f"  Q{grade.question_number}: {_num(grade.marks_obtained)}/{_num(grade.total_marks)} "
            f"[{grade.performance}]"
        )
        if grade.feedback:
            lines.append(f"      {grade.feedback}")
    if report.general_feedback:
        lines.extend(["", f"Feedback: {report.general_feedback}"])
    return "\n".join(lines)


def _num(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


async def load_selection(controller: EvaluationController, args: argparse.Namespace) -> int:
    """Read the files named on the command line into the controller."""
    selection = {
        DocumentGroup.question_paper: args.question_paper,
        DocumentGroup.answer_key: args.answer_key,
        DocumentGroup.student_sheets: args.student_sheets,
    }
    rejected_count = 0
    for group, paths in selection.items():
        try:
            documents = await asyncio.gather(*(read_document(p) for p in paths))
        except OSError as e:
            print(f"Error: cannot read {e.filename}: {e.strerror}")
            return -1
        for rejection in controller.add_documents(group, documents):
            print(f"Skipped: {rejection.message}")
            rejected_count += 1
    return rejected_count


async def evaluate_command(args: argparse.Namespace) -> int:
    """
    Execute the evaluate command.

    Args:
        args: Parsed command-line arguments

    Returns:
        int: Exit code (0 for success, 1 for error)
    """
    try:
        settings = get_settings()
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    if args.retries < 0 or args.retries > 5:
        print("Error: --retries must be between 0 and 5")
        return 1

    credentials = StaticCredentialProvider(args.api_key) if args.api_key else None
    controller = build_controller(settings, credentials=credentials)

    if await load_selection(controller, args) < 0:
        return 1

    @retry_with_backoff(max_retries=args.retries)
    async def run_once() -> Report:
        return await controller.submit()

    try:
        report = await asyncio.wait_for(run_once(), timeout=args.timeout)
    except asyncio.TimeoutError:
        controller.abandon()
        print(f"Error: evaluation timed out after {args.timeout}s; nothing was saved")
        return 1
    except EvaluationError as e:
        print(f"Error: {e.message}")
        return 1

    if args.json:
        print(json.dumps(report.to_json_dict(), indent=2, ensure_ascii=False))
    else:
        print(format_report(report))
        print(f"\nSaved to history ({len(controller.history)} reports)")
    return 0


async def history_command(args: argparse.Namespace) -> int:
    """Execute a history subcommand."""
    try:
        store = build_history_store(get_settings())
    except ValueError as e:
        print(f"Configuration error: {e}")
        return 1

    if args.history_command == "list":
        log = await store.load()
        if args.json:
            print(json.dumps([r.to_json_dict() for r in log.reports], indent=2, ensure_ascii=False))
            return 0
        if len(log) == 0:
            print("No evaluations yet")
            return 0
        print(f"{len(log)} evaluations, average score {log.average_percentage}%\n")
        for report in log.reports:
            print(
                f"{report.id}  {report.percentage:>3}%  "
                f"{report.student_info.name or 'Anonymous'}  "
                f"{report.student_info.subject or 'General'}"
            )
        return 0

    try:
        report_id = UUID(args.report_id)
    except ValueError:
        print(f"Error: not a report id: {args.report_id}")
        return 1

    if args.history_command == "show":
        report = (await store.load()).get(report_id)
        if report is None:
            print(f"Error: report {report_id} not found")
            return 1
        if args.json:
            print(json.dumps(report.to_json_dict(), indent=2, ensure_ascii=False))
        else:
            print(format_report(report))
        return 0

    if args.history_command == "delete":
        try:
            log = await store.remove(report_id)
        except EvaluationError as e:
            print(f"Error: {e.message}")
            return 1
        print(f"Deleted {report_id} ({len(log)} reports remain)")
        return 0

    print("Usage: edugrade history {list,show,delete}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "evaluate":
        try:
            return asyncio.run(evaluate_command(args))
        except KeyboardInterrupt:
            print("\n\nInterrupted by user")
            return 1
    elif args.command == "history":
        return asyncio.run(history_command(args))
    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
