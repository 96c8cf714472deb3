"""
DOCX Tree Traversal
===================
Shared helpers for walking a python-docx document at the XML level.

The indexer and the repair engine must agree exactly on what "paragraph 7,
run 3" means, so both go through the functions here:

- paragraphs are every ``w:p`` under the body, in document order, including
  paragraphs inside tables and other nested content;
- the runs of a paragraph are every ``w:r`` whose nearest ``w:p`` ancestor is
  that paragraph (runs inside ``w:hyperlink``, ``w:fldSimple``, ``w:ins`` and
  similar wrappers are included; runs of a nested text-box paragraph are not);
- the text of a run is the concatenation of its ``w:t`` children.
"""

from typing import List, Optional

from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn


W_P = qn('w:p')
W_R = qn('w:r')
W_T = qn('w:t')
W_HYPERLINK = qn('w:hyperlink')
W_FLD_SIMPLE = qn('w:fldSimple')
W_FLD_CHAR = qn('w:fldChar')
W_INSTR_TEXT = qn('w:instrText')
W_DRAWING = qn('w:drawing')
R_ID = qn('r:id')
XML_SPACE = qn('xml:space')


def iter_paragraphs(document) -> List:
    """All ``w:p`` elements under the document body, in document order."""
    return list(document.element.body.iter(W_P))


def nearest_paragraph(element):
    """Closest enclosing ``w:p`` of an element, or None."""
    return next(element.iterancestors(W_P), None)


def paragraph_runs(paragraph) -> List:
    """Runs owned by this paragraph, in document order."""
    return [r for r in paragraph.iter(W_R) if nearest_paragraph(r) is paragraph]


def run_text(run) -> str:
    return ''.join(t.text or '' for t in run.findall(W_T))


def paragraph_text(paragraph) -> str:
    return ''.join(run_text(r) for r in paragraph_runs(paragraph))


def has_text(run) -> bool:
    """True if the run has at least one ``w:t`` child."""
    return run.find(W_T) is not None


def set_preserve_space(text_element, text: str):
    """Mark a ``w:t`` so Word keeps leading/trailing spaces."""
    if text and text != text.strip():
        text_element.set(XML_SPACE, 'preserve')


def ensure_text_element(run):
    """Return the run's first ``w:t``, creating one if it has none."""
    t = run.find(W_T)
    if t is None:
        t = OxmlElement('w:t')
        run.append(t)
    return t


def set_run_text(run, text: str):
    """
    Replace the visible text of a run.

    The first ``w:t`` receives the new text; any further ``w:t`` children are
    emptied. Run properties (``w:rPr``) are left untouched.
    """
    first = ensure_text_element(run)
    first.text = text
    set_preserve_space(first, text)
    for extra in run.findall(W_T)[1:]:
        extra.text = ''


def clear_run_text(run):
    """Empty every ``w:t`` of a run, keeping the elements and formatting."""
    for t in run.findall(W_T):
        t.text = ''


# =============================================================================
# RELATIONSHIPS
# =============================================================================

def external_target(part, relationship_id: Optional[str]) -> Optional[str]:
    """Target URI of an external relationship, or None if rId is not external."""
    if not relationship_id:
        return None
    rel = part.rels.get(relationship_id)
    if rel is None or not rel.is_external:
        return None
    return rel.target_ref


def relationship_reference_count(part, relationship_id: str) -> int:
    """Number of ``r:id`` attributes in the part that point at relationship_id."""
    return sum(1 for rid in part.element.xpath('//@r:id') if rid == relationship_id)


def repoint_hyperlinks(part, old_relationship_id: str, url: str) -> str:
    """
    Point every ``w:hyperlink`` using old_relationship_id at url.

    An existing external hyperlink relationship to url is reused; otherwise
    one is created. The old relationship is dropped once nothing in the part
    references it.

    Returns:
        The relationship id now used by the hyperlinks
    """
    new_relationship_id = part.relate_to(url, RT.HYPERLINK, is_external=True)
    if new_relationship_id == old_relationship_id:
        return new_relationship_id

    for hyperlink in part.element.iter(W_HYPERLINK):
        if hyperlink.get(R_ID) == old_relationship_id:
            hyperlink.set(R_ID, new_relationship_id)

    if (old_relationship_id in part.rels and
            relationship_reference_count(part, old_relationship_id) == 0):
        part.drop_rel(old_relationship_id)

    return new_relationship_id
