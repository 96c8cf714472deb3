"""
Hyperlink Index
===============
Build-once, read-many collection of the hyperlinks in one document.

The index holds a primary ``id -> HyperlinkRef`` map plus two secondary
maps keyed by the identifiers found in each target:

- ``document_id -> [ref ids]``
- ``content_id  -> [ref ids]``

Usage:
    from doc_medic.indexer import build_index

    index = build_index(docx.Document("policy.docx"))
    ids = index.extract_lookup_ids()
"""

from collections import defaultdict
from typing import Dict, Iterator, List, Optional, Set, Tuple

from docx.oxml.ns import qn

from config_logging import get_logger, ValidationError

from .docx_tree import (
    R_ID, W_FLD_CHAR, W_FLD_SIMPLE, W_HYPERLINK, W_INSTR_TEXT, W_R, W_T,
    external_target, has_text, iter_paragraphs, nearest_paragraph,
    paragraph_runs, run_text,
)
from .models import FieldType, HyperlinkRef, TextRange, new_hyperlink_id
from .patterns import (
    extract_content_id, extract_document_id, extract_field_target,
    is_eligible_url, is_hyperlink_instruction,
)

logger = get_logger('doc_medic.indexer')

W_ANCHOR = qn('w:anchor')
W_INSTR = qn('w:instr')
W_FLD_CHAR_TYPE = qn('w:fldCharType')


class HyperlinkIndex:
    """
    Hyperlink references for one document with identifier lookups.

    References are immutable snapshots. If the document is changed after the
    index is built, build a new index.
    """

    def __init__(self):
        self._hyperlinks: Dict[str, HyperlinkRef] = {}
        self._by_document_id: Dict[str, List[str]] = defaultdict(list)
        self._by_content_id: Dict[str, List[str]] = defaultdict(list)

    def add_hyperlink(self, ref: HyperlinkRef):
        """Insert a reference and register its Document_ID / Content_ID."""
        if ref is None:
            raise ValidationError("Hyperlink reference cannot be None", field='ref')
        if ref.id in self._hyperlinks:
            raise ValidationError(f"Duplicate hyperlink id: {ref.id}", field='id')

        self._hyperlinks[ref.id] = ref

        document_id = extract_document_id(ref.target)
        if document_id is not None:
            self._by_document_id[document_id].append(ref.id)

        content_id = extract_content_id(ref.target)
        if content_id is not None:
            self._by_content_id[content_id].append(ref.id)

    def get_hyperlink(self, hyperlink_id: str) -> Optional[HyperlinkRef]:
        return self._hyperlinks.get(hyperlink_id)

    def get_hyperlinks_by_document_id(self, document_id: str) -> List[HyperlinkRef]:
        return [self._hyperlinks[i] for i in self._by_document_id.get(document_id, [])]

    def get_hyperlinks_by_content_id(self, content_id: str) -> List[HyperlinkRef]:
        return [self._hyperlinks[i] for i in self._by_content_id.get(content_id, [])]

    def extract_lookup_ids(self) -> Set[str]:
        """All Document_IDs and Content_IDs seen, deduplicated."""
        return set(self._by_document_id) | set(self._by_content_id)

    def get_eligible_hyperlinks(self) -> List[HyperlinkRef]:
        return [ref for ref in self._hyperlinks.values() if is_eligible_url(ref.target)]

    def clear(self):
        self._hyperlinks.clear()
        self._by_document_id.clear()
        self._by_content_id.clear()

    @property
    def count(self) -> int:
        return len(self._hyperlinks)

    @property
    def hyperlinks(self) -> List[HyperlinkRef]:
        return list(self._hyperlinks.values())

    def __len__(self) -> int:
        return len(self._hyperlinks)

    def __iter__(self) -> Iterator[HyperlinkRef]:
        return iter(list(self._hyperlinks.values()))

    def to_dict(self) -> Dict:
        return {
            'count': self.count,
            'eligible': len(self.get_eligible_hyperlinks()),
            'lookup_ids': sorted(self.extract_lookup_ids()),
            'hyperlinks': [ref.to_dict() for ref in self._hyperlinks.values()],
        }


# =============================================================================
# INDEX BUILDER
# =============================================================================

class HyperlinkIndexBuilder:
    """
    Walks a python-docx Document and indexes every hyperlink construct.

    Recognized shapes:
        <w:hyperlink r:id="rId5">        external link (relationship table)
        <w:hyperlink w:anchor="Intro">   internal bookmark link
        <w:fldSimple w:instr="HYPERLINK &quot;url&quot;">
        <w:fldChar begin/> HYPERLINK "url" <w:fldChar separate/> ... <w:fldChar end/>

    Example:
        builder = HyperlinkIndexBuilder()
        index = builder.build(document)
    """

    def build(self, document) -> HyperlinkIndex:
        index = HyperlinkIndex()

        for paragraph_index, refs in self._discover(document):
            for ref in refs:
                index.add_hyperlink(ref)
                logger.debug("Indexed hyperlink", kind=ref.kind.value, target=ref.target,
                             paragraph=paragraph_index,
                             runs=f"{ref.display_text_range.start_run_index}-"
                                  f"{ref.display_text_range.end_run_index}")

        logger.info(f"Indexed {index.count} hyperlinks",
                    eligible=len(index.get_eligible_hyperlinks()))
        return index

    def validate_index(self, document, index: HyperlinkIndex) -> bool:
        """
        Check that an index still matches the document it was built from.

        Counts the hyperlinks the document holds now, using the same walk as
        build(). A mismatch means the tree changed after indexing and the
        index must be rebuilt before repairing.
        """
        if document is None:
            raise ValidationError("Document cannot be None", field='document')
        if index is None:
            raise ValidationError("Hyperlink index cannot be None", field='index')

        current = sum(len(refs) for _, refs in self._discover(document))
        if current != index.count:
            logger.warning("Hyperlink index is stale", indexed=index.count, current=current)
            return False
        return True

    def _discover(self, document) -> Iterator[Tuple[int, List[HyperlinkRef]]]:
        """Yield (paragraph index, refs in run order) for each paragraph."""
        part = document.part

        for paragraph_index, paragraph in enumerate(iter_paragraphs(document)):
            runs = paragraph_runs(paragraph)
            if not runs:
                continue
            positions = {run: i for i, run in enumerate(runs)}
            claimed: Set[int] = set()

            found: List[Tuple[int, HyperlinkRef]] = []
            found.extend(self._index_markup(part, paragraph, paragraph_index, runs,
                                            positions, claimed))
            found.extend(self._index_complex_fields(paragraph_index, runs, claimed))

            yield paragraph_index, [ref for _, ref in sorted(found, key=lambda item: item[0])]

    # -------------------------------------------------------------------------
    # Display span
    # -------------------------------------------------------------------------

    @staticmethod
    def _text_range(paragraph_index: int, runs: List, indices: List[int]) -> Optional[TextRange]:
        """Span from the first to the last text-bearing run in indices."""
        text_indices = [i for i in indices if has_text(runs[i])]
        if not text_indices:
            return None

        start, end = min(text_indices), max(text_indices)
        text = ''.join(run_text(r) for r in runs[start:end + 1])
        if start == end:
            return TextRange.for_single_run(paragraph_index, start, text)
        return TextRange.for_multiple_runs(
            paragraph_index, start, end, text,
            start_char_offset=0,
            end_char_offset=len(run_text(runs[end])),
        )

    # -------------------------------------------------------------------------
    # w:hyperlink and w:fldSimple
    # -------------------------------------------------------------------------

    def _index_markup(self, part, paragraph, paragraph_index: int, runs: List,
                      positions: Dict, claimed: Set[int]) -> List[Tuple[int, HyperlinkRef]]:
        """
        Index w:hyperlink elements, then HYPERLINK w:fldSimple elements.

        A run belongs to at most one ref. When the constructs nest, the
        outermost w:hyperlink keeps the runs and anything wrapping or nested
        in it is skipped.
        """
        found = []
        for tag in (W_HYPERLINK, W_FLD_SIMPLE):
            for element in paragraph.iter(tag):
                if nearest_paragraph(element) is not paragraph:
                    continue

                indices = sorted(positions[r] for r in element.iter(W_R) if r in positions)
                if claimed.intersection(indices):
                    logger.debug("Skipping nested hyperlink", paragraph=paragraph_index)
                    continue

                text_range = self._text_range(paragraph_index, runs, indices)
                if text_range is None:
                    logger.debug("Skipping hyperlink with no display text", paragraph=paragraph_index)
                    continue

                if tag == W_HYPERLINK:
                    ref = self._hyperlink_ref(part, element, text_range)
                else:
                    ref = self._simple_field_ref(element, text_range)

                if ref is not None:
                    claimed.update(indices)
                    found.append((text_range.start_run_index, ref))
        return found

    @staticmethod
    def _hyperlink_ref(part, element, text_range: TextRange) -> Optional[HyperlinkRef]:
        relationship_id = element.get(R_ID)
        anchor = element.get(W_ANCHOR)

        if relationship_id:
            target = external_target(part, relationship_id)
            if target is not None:
                return HyperlinkRef.for_external_link(
                    new_hyperlink_id(), relationship_id, target, text_range)
            if not anchor:
                logger.warning("Hyperlink relationship not found, skipping",
                               relationship_id=relationship_id,
                               paragraph=text_range.paragraph_index)
                return None

        if anchor:
            return HyperlinkRef.for_internal_anchor(new_hyperlink_id(), anchor, text_range)

        return None

    @staticmethod
    def _simple_field_ref(element, text_range: TextRange) -> Optional[HyperlinkRef]:
        instruction = element.get(W_INSTR) or ''
        if not is_hyperlink_instruction(instruction):
            return None

        target = extract_field_target(instruction)
        if target is None:
            logger.debug("HYPERLINK field has no quoted target", instruction=instruction)
            return None

        return HyperlinkRef.for_field_code(
            new_hyperlink_id(), target, text_range, FieldType.SIMPLE)

    # -------------------------------------------------------------------------
    # Complex fields (w:fldChar / w:instrText)
    # -------------------------------------------------------------------------

    def _index_complex_fields(self, paragraph_index: int, runs: List,
                              claimed: Set[int]) -> List[Tuple[int, HyperlinkRef]]:
        """
        Scan the paragraph's runs for begin/separate/end field sequences.

        Fields may nest (e.g. a PAGEREF inside a HYPERLINK result). Fields
        that do not close within the paragraph are ignored. Result runs already
        claimed by a w:hyperlink or w:fldSimple are not indexed again.
        """
        found = []
        stack: List[Dict] = []

        for run_index, run in enumerate(runs):
            for child in run:
                if child.tag == W_FLD_CHAR:
                    char_type = child.get(W_FLD_CHAR_TYPE)
                    if char_type == 'begin':
                        stack.append({'instruction': [], 'instruction_run': None,
                                      'separated': False, 'result_runs': []})
                    elif char_type == 'separate' and stack:
                        stack[-1]['separated'] = True
                    elif char_type == 'end' and stack:
                        field_state = stack.pop()
                        ref = self._complex_field_ref(paragraph_index, runs, field_state)
                        if ref is None:
                            continue
                        if claimed.intersection(field_state['result_runs']):
                            logger.debug("Skipping nested hyperlink field", paragraph=paragraph_index)
                        else:
                            found.append((ref.display_text_range.start_run_index, ref))

                elif child.tag == W_INSTR_TEXT and stack and not stack[-1]['separated']:
                    current = stack[-1]
                    current['instruction'].append(child.text or '')
                    if current['instruction_run'] is None:
                        current['instruction_run'] = run_index

                elif child.tag == W_T:
                    for open_field in stack:
                        if open_field['separated'] and (
                                not open_field['result_runs'] or
                                open_field['result_runs'][-1] != run_index):
                            open_field['result_runs'].append(run_index)

        return found

    def _complex_field_ref(self, paragraph_index: int, runs: List,
                           field_state: Dict) -> Optional[HyperlinkRef]:
        instruction = ''.join(field_state['instruction'])
        if not is_hyperlink_instruction(instruction):
            return None

        target = extract_field_target(instruction)
        if target is None:
            logger.debug("HYPERLINK field has no quoted target", instruction=instruction)
            return None

        text_range = self._text_range(paragraph_index, runs, field_state['result_runs'])
        if text_range is None:
            logger.debug("Skipping field hyperlink with no display text", paragraph=paragraph_index)
            return None

        return HyperlinkRef.for_field_code(
            new_hyperlink_id(), target, text_range, FieldType.COMPLEX,
            instruction_run_index=field_state['instruction_run'])


def build_index(document) -> HyperlinkIndex:
    """Index every hyperlink in a python-docx Document."""
    return HyperlinkIndexBuilder().build(document)


def validate_index(document, index: HyperlinkIndex) -> bool:
    """True if index still matches the hyperlinks in document."""
    return HyperlinkIndexBuilder().validate_index(document, index)
