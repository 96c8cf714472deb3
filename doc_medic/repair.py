"""
Hyperlink Repair Engine
=======================
Rewrites eligible hyperlinks to their canonical Nuxeo URL and appends the
Content_ID display suffix, e.g.::

    "Policy Manual"  ->  "Policy Manual (123456)"
    http://old.example/doc?docid=ABC
        ->  http://thesource.cvshealth.com/nuxeo/thesource/#!/view?docid=ABC

Repair is idempotent: a hyperlink that already has the canonical target and
the expected suffix is left alone, so a second pass makes no edits.

The engine never calls the lookup service itself; it is handed an
``id -> LookupResult`` map resolved beforehand.
"""

from typing import Dict, List, Optional

from config_logging import get_logger, ProcessingError, ValidationError

from .docx_tree import (
    W_FLD_CHAR, W_FLD_SIMPLE, W_INSTR_TEXT,
    clear_run_text, external_target, has_text, iter_paragraphs, paragraph_runs,
    repoint_hyperlinks, run_text, set_run_text,
)
from .indexer import HyperlinkIndex, W_FLD_CHAR_TYPE, W_INSTR
from .models import FieldType, HyperlinkRef, LinkKind, LookupResult, TextRange
from .patterns import (
    build_canonical_url, extract_content_id, extract_document_id,
    find_display_suffix, format_display_suffix, is_canonical_url,
)

logger = get_logger('doc_medic.repair')


def _replace_quoted_target(instruction: str, old_target: str, new_target: str) -> Optional[str]:
    quoted = f'"{old_target}"'
    if quoted not in instruction:
        return None
    return instruction.replace(quoted, f'"{new_target}"', 1)


class HyperlinkRepairEngine:
    """
    Applies lookup metadata to the hyperlinks of one document.

    Example:
        engine = HyperlinkRepairEngine()
        changed = engine.repair(document, index, lookup_map)
    """

    def repair(self, document, index: HyperlinkIndex,
               lookup_map: Dict[str, LookupResult]) -> int:
        """
        Repair every eligible hyperlink that the lookup map resolves.

        Args:
            document: python-docx Document the index was built from
            index: Hyperlink index of that document
            lookup_map: Document_ID / Content_ID -> LookupResult

        Returns:
            Number of hyperlinks actually changed
        """
        if document is None:
            raise ValidationError("Document cannot be None", field='document')
        if index is None:
            raise ValidationError("Hyperlink index cannot be None", field='index')
        if lookup_map is None:
            raise ValidationError("Lookup map cannot be None", field='lookup_map')

        repaired = 0
        for ref in index.get_eligible_hyperlinks():
            metadata = self._resolve_metadata(ref, lookup_map)
            if metadata is None:
                logger.debug("No lookup result for hyperlink", target=ref.target)
                continue

            try:
                if self.repair_single(document, ref, metadata):
                    repaired += 1
            except Exception as e:
                logger.warning(f"Failed to repair hyperlink: {e}", target=ref.target,
                               paragraph=ref.display_text_range.paragraph_index)

        logger.info(f"Repaired {repaired} hyperlinks")
        return repaired

    @staticmethod
    def _resolve_metadata(ref: HyperlinkRef,
                          lookup_map: Dict[str, LookupResult]) -> Optional[LookupResult]:
        document_id = extract_document_id(ref.target)
        if document_id and document_id in lookup_map:
            return lookup_map[document_id]

        content_id = extract_content_id(ref.target)
        if content_id and content_id in lookup_map:
            return lookup_map[content_id]

        return None

    def needs_repair(self, ref: HyperlinkRef, metadata: LookupResult) -> bool:
        """True if the target is not canonical or the display suffix is missing."""
        if not is_canonical_url(ref.target, metadata.document_id):
            return True
        expected_suffix = format_display_suffix(metadata.get_display_suffix())
        return not ref.display_text.endswith(expected_suffix)

    def repair_single(self, document, ref: HyperlinkRef, metadata: LookupResult) -> bool:
        """
        Repair one hyperlink. URL and display text are fixed independently;
        a failure in one does not stop the other.

        Returns:
            True if anything in the document changed
        """
        if not self.needs_repair(ref, metadata):
            return False

        url_changed = False
        if not is_canonical_url(ref.target, metadata.document_id):
            canonical_url = build_canonical_url(metadata.document_id)
            try:
                url_changed = self._repair_url(document, ref, canonical_url)
            except Exception as e:
                logger.warning(f"URL repair failed: {e}", target=ref.target)

        text_changed = False
        try:
            text_changed = self._repair_display_text(document, ref, metadata)
        except Exception as e:
            logger.warning(f"Display text repair failed: {e}", target=ref.target)

        if url_changed or text_changed:
            logger.debug("Repaired hyperlink", target=ref.target,
                         url_changed=url_changed, text_changed=text_changed)
        return url_changed or text_changed

    # -------------------------------------------------------------------------
    # URL repair
    # -------------------------------------------------------------------------

    def _repair_url(self, document, ref: HyperlinkRef, canonical_url: str) -> bool:
        if ref.kind is LinkKind.EXTERNAL:
            return self._repair_external_url(document.part, ref, canonical_url)
        elif ref.kind is LinkKind.INTERNAL_ANCHOR:
            return False
        elif ref.kind is LinkKind.FIELD_CODE:
            return self._repair_field_url(document, ref, canonical_url)
        else:
            raise ProcessingError(f"Unhandled hyperlink kind: {ref.kind}", stage='repair_url')

    @staticmethod
    def _repair_external_url(part, ref: HyperlinkRef, canonical_url: str) -> bool:
        if external_target(part, ref.relationship_id) is None:
            # Already repointed through another hyperlink sharing this relationship
            logger.debug("Relationship no longer present", relationship_id=ref.relationship_id)
            return False
        repoint_hyperlinks(part, ref.relationship_id, canonical_url)
        return True

    def _repair_field_url(self, document, ref: HyperlinkRef, canonical_url: str) -> bool:
        runs = self._locate_runs(document, ref.display_text_range)
        if runs is None:
            return False

        if ref.field_type is FieldType.SIMPLE:
            field_element = next(
                runs[ref.display_text_range.start_run_index].iterancestors(W_FLD_SIMPLE), None)
            if field_element is None:
                logger.warning("Field element not found", target=ref.target)
                return False
            instruction = _replace_quoted_target(
                field_element.get(W_INSTR) or '', ref.target, canonical_url)
            if instruction is None:
                logger.warning("Field target not found in instruction", target=ref.target)
                return False
            field_element.set(W_INSTR, instruction)
            return True

        elif ref.field_type is FieldType.COMPLEX:
            return self._repair_complex_field_url(runs, ref, canonical_url)

        else:
            raise ProcessingError(f"Unhandled field type: {ref.field_type}", stage='repair_url')

    @staticmethod
    def _repair_complex_field_url(runs: List, ref: HyperlinkRef, canonical_url: str) -> bool:
        start = ref.instruction_run_index
        if start is None or not 0 <= start < len(runs):
            logger.warning("Field instruction run out of range", target=ref.target)
            return False

        for run in runs[start:]:
            for child in run:
                if child.tag == W_FLD_CHAR and child.get(W_FLD_CHAR_TYPE) == 'separate':
                    logger.warning("Field URL spans several instruction elements, not rewritten",
                                   target=ref.target)
                    return False
                if child.tag == W_INSTR_TEXT:
                    instruction = _replace_quoted_target(child.text or '', ref.target, canonical_url)
                    if instruction is not None:
                        child.text = instruction
                        return True

        logger.warning("Field instruction not found", target=ref.target)
        return False

    # -------------------------------------------------------------------------
    # Display text repair
    # -------------------------------------------------------------------------

    def _repair_display_text(self, document, ref: HyperlinkRef, metadata: LookupResult) -> bool:
        expected_suffix = format_display_suffix(metadata.get_display_suffix())
        current = ref.display_text
        if current.endswith(expected_suffix):
            return False

        match = find_display_suffix(current)
        if match:
            new_text = current[:match.start()] + expected_suffix
        else:
            new_text = current.rstrip() + expected_suffix

        return self._splice_text(document, ref.display_text_range, new_text)

    def _splice_text(self, document, text_range: TextRange, new_text: str) -> bool:
        """
        Write new_text into the span. Multi-run spans are flattened: the
        first run takes all the text (and its formatting governs it), the
        remaining runs are emptied.

        Runs without text (a lone w:tab or w:br) split the span into
        segments. Only the last segment is flattened, so text before a tab
        stays before it.
        """
        runs = self._locate_runs(document, text_range)
        if runs is None:
            return False

        start, end = text_range.start_run_index, text_range.end_run_index
        segment_start = self._last_segment_start(runs, start, end)
        kept = ''.join(run_text(r) for r in runs[start:segment_start])
        if new_text.startswith(kept):
            start, new_text = segment_start, new_text[len(kept):]

        set_run_text(runs[start], new_text)
        for run in runs[start + 1:end + 1]:
            clear_run_text(run)
        return True

    @staticmethod
    def _last_segment_start(runs: List, start: int, end: int) -> int:
        """Index of the first run after the span's last text-less run."""
        for i in range(end, start, -1):
            if not has_text(runs[i]):
                return i + 1
        return start

    @staticmethod
    def _locate_runs(document, text_range: TextRange) -> Optional[List]:
        """Runs of the span's paragraph, or None if the span no longer fits."""
        paragraphs = iter_paragraphs(document)
        if not 0 <= text_range.paragraph_index < len(paragraphs):
            logger.warning("Paragraph index out of range",
                           paragraph=text_range.paragraph_index, paragraphs=len(paragraphs))
            return None

        runs = paragraph_runs(paragraphs[text_range.paragraph_index])
        if text_range.start_run_index < 0 or text_range.end_run_index >= len(runs):
            logger.warning("Run index out of range", paragraph=text_range.paragraph_index,
                           start=text_range.start_run_index, end=text_range.end_run_index,
                           runs=len(runs))
            return None
        return runs
