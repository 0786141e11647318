"""
dept-records command-line tool.

Usage:
    # Extract a document with Gemini and print the blob to persist
    dept-records extract stock_register.jpg --output register.json
    dept-records extract https://storage.example.org/docs/sop.pdf

    # Parse a persisted blob into canonical JSON
    dept-records parse register.json --diagnostics

    # Export a persisted blob to Excel or PDF
    dept-records export register.json --format excel --output-dir exports/

Configuration: optional config.json (see config.json.example); the Gemini
API key is read from GOOGLE_API_KEY / GEMINI_API_KEY (.env supported).
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from dept_records.config import get_config
from dept_records.config_schema import RootConfig
from dept_records.document_extractor import DocumentExtractor
from dept_records.exceptions import DeptRecordsError
from dept_records.exporters import export_to_excel, export_to_pdf
from dept_records.extraction_models import ParseDiagnostics
from dept_records.text_parser import parse_extracted_text
from dept_records.utils.logger import setup_logger
from dept_records.utils.security import sanitize_error

logger = logging.getLogger(__name__)

STDIN_MARKER = "-"


def _read_blob(source: str) -> str:
    if source == STDIN_MARKER:
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _print_error(message: str) -> None:
    print(f"✗ ERROR: {message}", file=sys.stderr)


def cmd_extract(args: argparse.Namespace, config: RootConfig) -> int:
    prompt = None
    if args.prompt_file:
        prompt = Path(args.prompt_file).read_text(encoding="utf-8")

    extractor = DocumentExtractor.from_config(config)
    try:
        if args.source.startswith(("http://", "https://")):
            result = extractor.extract_from_url(args.source, prompt=prompt)
        else:
            result = extractor.extract_from_path(args.source, prompt=prompt)
    finally:
        extractor.client.close()

    if not result.success:
        _print_error(result.error or "Extraction failed")
        return 1

    if result.truncated:
        logger.warning("Model output hit the token limit; the blob was repaired and may be incomplete")

    if args.output:
        Path(args.output).write_text(result.text, encoding="utf-8")
        print(f"✅ Extracted text saved to {args.output}", file=sys.stderr)
    else:
        print(result.text)
    return 0


def cmd_parse(args: argparse.Namespace, config: RootConfig) -> int:
    diagnostics = ParseDiagnostics()
    extraction = parse_extracted_text(_read_blob(args.blob), diagnostics)

    print(json.dumps(extraction.to_dict(), ensure_ascii=False, indent=2))
    if args.diagnostics:
        print(json.dumps(asdict(diagnostics), indent=2), file=sys.stderr)
    return 0


def cmd_export(args: argparse.Namespace, config: RootConfig) -> int:
    extraction = parse_extracted_text(_read_blob(args.blob))

    name = args.name or (Path(args.blob).name if args.blob != STDIN_MARKER else "document")
    output_dir = Path(args.output_dir) if args.output_dir else config.export.output_dir

    if args.format == "excel":
        path = export_to_excel(
            extraction,
            name,
            output_dir,
            column_width=config.export.column_width,
            max_name_length=config.export.max_name_length,
        )
    else:
        path = export_to_pdf(
            extraction,
            name,
            output_dir,
            max_name_length=config.export.max_name_length,
        )

    print(str(path))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dept-records",
        description="Hospital department records: Gemini extraction, parsing and export",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dept-records extract register.jpg --output register.json
  dept-records parse register.json --diagnostics
  dept-records export register.json --format pdf --name "ICU Stock Register"
        """
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.json (default: ./config.json, defaults if missing)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Extract a document (file path or URL) with Gemini")
    extract.add_argument("source", help="Image, PDF or Word file path, or an http(s) URL")
    extract.add_argument("--prompt-file", default=None, help="Read a custom extraction prompt from this file")
    extract.add_argument("--output", "-o", default=None, help="Write the blob here instead of stdout")
    extract.set_defaults(handler=cmd_extract)

    parse = subparsers.add_parser("parse", help="Parse a persisted blob into canonical JSON")
    parse.add_argument("blob", help="File holding the persisted extracted text ('-' for stdin)")
    parse.add_argument("--diagnostics", action="store_true", help="Print parse diagnostics to stderr")
    parse.set_defaults(handler=cmd_parse)

    export = subparsers.add_parser("export", help="Export a persisted blob to Excel or PDF")
    export.add_argument("blob", help="File holding the persisted extracted text ('-' for stdin)")
    export.add_argument("--format", choices=["excel", "pdf"], required=True, help="Export format")
    export.add_argument("--name", default=None, help="Original document name used for the output file")
    export.add_argument("--output-dir", default=None, help="Output directory (default: from config)")
    export.set_defaults(handler=cmd_export)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = get_config(reload=True, config_path=Path(args.config) if args.config else None)
    except DeptRecordsError as e:
        _print_error(str(e))
        return 1

    setup_logger(
        "dept_records",
        log_level="DEBUG" if args.verbose else config.logging.level,
        log_format=config.logging.format,
        log_file=config.logging.log_file,
    )

    try:
        return args.handler(args, config)
    except DeptRecordsError as e:
        logger.error(f"{args.command} failed: {sanitize_error(e)}")
        _print_error(sanitize_error(e.message))
        return 1
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        _print_error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
