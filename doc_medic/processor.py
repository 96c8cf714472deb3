"""
Document Processor
==================
Runs the full Doc Medic pipeline over one or more .docx files:

    open -> index hyperlinks -> resolve ids -> repair -> formatting passes -> save

Files are processed concurrently, one python-docx Document per worker. A
file that fails is reported in the summary and never stops the batch.
Changed files are written to a temporary file next to the original, the
original is copied to ``<name>.docx.bak`` and the temporary file then
replaces it.
"""

import errno
import os
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from docx import Document

from config_logging import (
    AppConfig, FileError, StructuredLogger, ValidationError,
    get_config, get_logger, validate_file_extension,
)

from .formatting import FormattingService
from .indexer import HyperlinkIndexBuilder
from .lookup import LookupClient
from .models import FileResult, ProcessOptions, ProcessSummary
from .repair import HyperlinkRepairEngine

logger = get_logger('doc_medic.processor')

BACKUP_SUFFIX = '.bak'
TEMP_PREFIX = '.~docmedic-'

# Windows sharing / lock violations
_LOCKED_WINERRORS = (32, 33)
_LOCKED_ERRNOS = (errno.EBUSY, getattr(errno, 'ETXTBSY', errno.EBUSY))


def is_locked_file_error(error: OSError) -> bool:
    """True if an OSError means the file is open in another process."""
    if getattr(error, 'winerror', None) in _LOCKED_WINERRORS:
        return True
    if error.errno in _LOCKED_ERRNOS:
        return True
    return 'being used by another process' in str(error).lower()


def collect_documents(paths: Iterable[str], allowed_extensions: tuple = ('.docx',)) -> List[Path]:
    """
    Expand files and directories into the list of documents to process.

    Directories are searched recursively. Word lock files (``~$name.docx``)
    are skipped.
    """
    documents: List[Path] = []
    seen = set()
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            candidates = sorted(p for p in path.rglob('*') if p.is_file())
        else:
            candidates = [path]

        for candidate in candidates:
            if candidate.name.startswith('~$'):
                continue
            if path.is_dir() and not validate_file_extension(candidate.name, allowed_extensions):
                continue
            key = str(candidate.resolve())
            if key not in seen:
                seen.add(key)
                documents.append(candidate)
    return documents


class DocumentProcessor:
    """
    Orchestrates indexing, lookup, repair and formatting for a batch of files.

    Usage:
        processor = DocumentProcessor()
        summary = processor.process_batch(["policies/"], ProcessOptions.default())
        print(summary.to_dict())
    """

    def __init__(
        self,
        lookup_client: Optional[LookupClient] = None,
        indexer: Optional[HyperlinkIndexBuilder] = None,
        repair_engine: Optional[HyperlinkRepairEngine] = None,
        formatting: Optional[FormattingService] = None,
        max_workers: Optional[int] = None,
        config: Optional[AppConfig] = None,
    ):
        self.config = config or get_config()
        self.lookup_client = lookup_client or LookupClient(config=self.config)
        self.indexer = indexer or HyperlinkIndexBuilder()
        self.repair_engine = repair_engine or HyperlinkRepairEngine()
        self.formatting = formatting or FormattingService()
        self.max_workers = max(1, max_workers or self.config.max_workers)
        self._cancel_event = threading.Event()

    def cancel(self):
        """Stop starting new files. Files already in progress finish."""
        self._cancel_event.set()

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def process_batch(
        self,
        paths: Iterable[str],
        options: Optional[ProcessOptions] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> ProcessSummary:
        """
        Process every document under paths.

        Args:
            paths: Files and/or directories
            options: Passes to run (defaults to all)
            cancel_event: Checked before each file starts
            progress_callback: Called as (completed, total, path) after each file

        Returns:
            ProcessSummary with counters, warnings and errors
        """
        options = options or ProcessOptions.default()
        cancel_event = cancel_event or self._cancel_event
        files = collect_documents(paths, self.config.allowed_extensions)
        summary = ProcessSummary()

        if not files:
            logger.warning("No documents to process")
            return summary.finish()

        with logger.log_operation('process_batch', files=len(files), workers=self.max_workers):
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(files))) as executor:
                futures = {
                    executor.submit(self._process_guarded, path, options, cancel_event): path
                    for path in files
                }
                completed = 0
                for future in as_completed(futures):
                    path = futures[future]
                    result, warning, error = future.result()
                    if result is not None:
                        summary.add_file(result)
                    if warning:
                        summary.warnings.append(warning)
                    if error:
                        summary.errors.append(error)

                    completed += 1
                    if progress_callback:
                        progress_callback(completed, len(files), str(path))

        summary.cancelled = cancel_event.is_set()
        summary.finish()
        logger.info("Batch complete", files_processed=summary.files_processed,
                    files_changed=summary.files_changed,
                    hyperlinks_repaired=summary.hyperlinks_repaired,
                    errors=len(summary.errors), duration_s=round(summary.duration_seconds, 2))
        return summary

    def process_single(self, path: str, options: Optional[ProcessOptions] = None) -> ProcessSummary:
        """Process one file and wrap the outcome in a ProcessSummary."""
        summary = ProcessSummary()
        result, warning, error = self._process_guarded(
            Path(path), options or ProcessOptions.default(), None)
        if result is not None:
            summary.add_file(result)
        if warning:
            summary.warnings.append(warning)
        if error:
            summary.errors.append(error)
        return summary.finish()

    def _process_guarded(self, path: Path, options: ProcessOptions,
                         cancel_event: Optional[threading.Event]):
        """Run process_file and turn failures into (result, warning, error)."""
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Skipping file, processing cancelled", path=str(path))
            return None, None, None

        StructuredLogger.new_correlation_id()
        try:
            return self.process_file(path, options, cancel_event), None, None
        except PermissionError as e:
            logger.warning(f"Access denied: {e}", path=str(path))
            return None, f"Access denied to file: {path} - {e}", None
        except OSError as e:
            if is_locked_file_error(e):
                logger.warning(f"File is locked: {e}", path=str(path))
                return None, f"File is locked or in use: {path} - {e}", None
            logger.error(f"Failed to process file: {e}", exc_info=True, path=str(path))
            return None, None, f"Failed to process file: {path} - {e}"
        except Exception as e:
            logger.error(f"Failed to process file: {e}", exc_info=True, path=str(path))
            return None, None, f"Failed to process file: {path} - {e}"

    # -------------------------------------------------------------------------
    # Single file pipeline
    # -------------------------------------------------------------------------

    def process_file(self, path, options: Optional[ProcessOptions] = None,
                     cancel_event: Optional[threading.Event] = None) -> FileResult:
        """
        Run the pipeline on one file and save it if anything changed.

        Raises:
            FileError: if the file does not exist
            ValidationError: if the file is not a .docx
            OSError: if the file cannot be read or written
        """
        path = Path(path)
        options = options or ProcessOptions.default()

        if not path.is_file():
            raise FileError(f"File not found: {path}", filename=str(path))
        if not validate_file_extension(path.name, self.config.allowed_extensions):
            raise ValidationError(f"Unsupported file type: {path.suffix}", field='path')

        logger.debug("Processing file", path=str(path))
        document = Document(str(path))
        result = FileResult(path=str(path))

        index = self.indexer.build(document)
        result.hyperlinks_inspected = index.count
        result.hyperlinks_eligible = len(index.get_eligible_hyperlinks())

        lookup_ids = index.extract_lookup_ids()
        if lookup_ids:
            lookup_map = self.lookup_client.resolve_map(lookup_ids, cancel_event)
            if lookup_map:
                result.hyperlinks_repaired = self.repair_engine.repair(document, index, lookup_map)

        if options.collapse_double_spaces:
            result.whitespace_changes = self.formatting.normalize_spaces(document)

        if options.fix_top_of_doc_links:
            result.top_of_document_links_fixed = self.formatting.fix_top_of_document_links(document)

        if options.standardize_styles:
            report = self.formatting.ensure_styles(document)
            result.style_changes = report.total_style_changes
            result.styles_modified = report.styles_modified
            result.warnings.extend(report.warnings)

        if options.center_images:
            result.images_centered = self.formatting.center_images(document)

        result.was_modified = result.any_changes
        if result.was_modified:
            self._save(document, path, options.create_backup)
            logger.info("Saved changes", path=str(path),
                        hyperlinks_repaired=result.hyperlinks_repaired)
        else:
            logger.debug("No changes", path=str(path))

        return result

    @staticmethod
    def _save(document, path: Path, create_backup: bool):
        """Write to a temp file beside path, back up the original, then replace it."""
        fd, temp_path = tempfile.mkstemp(suffix=path.suffix, prefix=TEMP_PREFIX, dir=str(path.parent))
        os.close(fd)
        try:
            document.save(temp_path)
            if create_backup:
                shutil.copy2(str(path), str(path.with_name(path.name + BACKUP_SUFFIX)))
            os.replace(temp_path, str(path))
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError as e:
                    logger.warning(f"Failed to delete temporary file: {e}", temp_path=temp_path)
