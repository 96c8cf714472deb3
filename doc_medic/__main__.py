"""
Doc Medic command line.

    python -m doc_medic process policies/ extra.docx --no-images --json
    python -m doc_medic index policy.docx
"""

import argparse
import dataclasses
import json
import sys
from typing import List, Optional

from docx import Document

from config_logging import (
    APP_NAME, VERSION, DocMedicError, ValidationError,
    get_config, get_logger, handle_errors, set_config, validate_file_extension,
)

from .indexer import build_index
from .models import ProcessOptions, ProcessSummary
from .processor import DocumentProcessor

logger = get_logger('doc_medic.cli')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='doc_medic',
        description=f'{APP_NAME} - repair The Source hyperlinks and normalize Word documents')
    parser.add_argument('--version', action='version', version=f'{APP_NAME} {VERSION}')
    parser.add_argument('--lookup-url', type=str, help='Lookup API base URL (overrides DOCMEDIC_LOOKUP_BASE_URL)')
    subparsers = parser.add_subparsers(dest='command')

    process = subparsers.add_parser('process', help='Repair hyperlinks and apply formatting')
    process.add_argument('paths', nargs='+', help='.docx files or directories')
    process.add_argument('--no-spaces', action='store_true', help='Do not collapse double spaces')
    process.add_argument('--no-top-links', action='store_true', help='Do not fix "Top of Document" links')
    process.add_argument('--no-styles', action='store_true', help='Do not standardize styles')
    process.add_argument('--no-images', action='store_true', help='Do not center images')
    process.add_argument('--no-backup', action='store_true', help='Do not write .bak copies')
    process.add_argument('--workers', type=int, help='Number of files processed in parallel')
    process.add_argument('--json', action='store_true', help='Print the summary as JSON')

    index = subparsers.add_parser('index', help='Print the hyperlink index of a document as JSON')
    index.add_argument('path', help='.docx file')

    return parser


def options_from_args(args: argparse.Namespace) -> ProcessOptions:
    return ProcessOptions(
        collapse_double_spaces=not args.no_spaces,
        fix_top_of_doc_links=not args.no_top_links,
        standardize_styles=not args.no_styles,
        center_images=not args.no_images,
        create_backup=not args.no_backup,
    )


def format_summary(summary: ProcessSummary) -> str:
    lines = [
        f"Files processed:        {summary.files_processed}",
        f"Files changed:          {summary.files_changed}",
        f"Hyperlinks inspected:   {summary.hyperlinks_inspected}",
        f"Hyperlinks eligible:    {summary.hyperlinks_eligible}",
        f"Hyperlinks repaired:    {summary.hyperlinks_repaired}",
        f"Whitespace fixes:       {summary.whitespace_changes}",
        f"Top of Document links:  {summary.top_of_document_links_fixed}",
        f"Styled elements:        {summary.style_changes}",
        f"Images centered:        {summary.images_centered}",
        f"Duration:               {summary.duration_seconds:.2f}s",
    ]
    for warning in summary.warnings:
        lines.append(f"WARNING: {warning}")
    for error in summary.errors:
        lines.append(f"ERROR: {error}")
    return '\n'.join(lines)


@handle_errors(logger)
def index_document(path: str) -> dict:
    """Hyperlink index of one document as a report dict."""
    if not validate_file_extension(path, get_config().allowed_extensions):
        raise ValidationError(f"Unsupported file type: {path}", field='path')
    return build_index(Document(path)).to_dict()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.lookup_url:
        set_config(dataclasses.replace(get_config(), lookup_base_url=args.lookup_url))

    if args.command == 'process':
        processor = DocumentProcessor(max_workers=args.workers)
        summary = processor.process_batch(args.paths, options_from_args(args))
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            print(format_summary(summary))
        return 0 if summary.is_successful else 1

    elif args.command == 'index':
        try:
            report = index_document(args.path)
        except DocMedicError as e:
            print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
            return 1
        print(json.dumps(report, indent=2))
        return 0

    parser.print_help()
    return 2


if __name__ == '__main__':
    sys.exit(main())
