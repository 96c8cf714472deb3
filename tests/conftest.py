"""
Shared fixtures: in-memory Word documents built with python-docx.
"""

from typing import List, Optional

import pytest
from docx import Document
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

from config_logging import reset_config
from doc_medic.models import LookupResult


CANONICAL_PREFIX = "http://thesource.cvshealth.com/nuxeo/thesource/#!/view?docid="


def make_run(text: Optional[str], bold: bool = False):
    """A w:r with an optional w:t. Pass text=None for a run with no text node."""
    run = OxmlElement('w:r')
    if bold:
        rPr = OxmlElement('w:rPr')
        rPr.append(OxmlElement('w:b'))
        run.append(rPr)
    if text is not None:
        t = OxmlElement('w:t')
        t.text = text
        t.set(qn('xml:space'), 'preserve')
        run.append(t)
    return run


def make_fld_char(char_type: str):
    run = OxmlElement('w:r')
    fld_char = OxmlElement('w:fldChar')
    fld_char.set(qn('w:fldCharType'), char_type)
    run.append(fld_char)
    return run


def make_instr_run(instruction: str):
    run = OxmlElement('w:r')
    instr = OxmlElement('w:instrText')
    instr.text = instruction
    instr.set(qn('xml:space'), 'preserve')
    run.append(instr)
    return run


class DocBuilder:
    """Builds hyperlink test documents paragraph by paragraph."""

    def __init__(self):
        self.document = Document()

    def paragraph(self, text: str = ""):
        """Add a paragraph (plain text run if text is given) and return its w:p."""
        return self.document.add_paragraph(text)._p

    def external_link(self, url: str, *texts: str, paragraph=None, bold_first: bool = False) -> str:
        """Append <w:hyperlink r:id> with one run per text. Returns the rId."""
        p = paragraph if paragraph is not None else self.paragraph()
        rid = self.document.part.relate_to(url, RT.HYPERLINK, is_external=True)
        hyperlink = OxmlElement('w:hyperlink')
        hyperlink.set(qn('r:id'), rid)
        for i, text in enumerate(texts):
            hyperlink.append(make_run(text, bold=bold_first and i == 0))
        p.append(hyperlink)
        return rid

    def anchor_link(self, anchor: str, text: str, paragraph=None):
        p = paragraph if paragraph is not None else self.paragraph()
        hyperlink = OxmlElement('w:hyperlink')
        hyperlink.set(qn('w:anchor'), anchor)
        hyperlink.append(make_run(text))
        p.append(hyperlink)
        return hyperlink

    def simple_field(self, instruction: str, text: str, paragraph=None):
        p = paragraph if paragraph is not None else self.paragraph()
        field = OxmlElement('w:fldSimple')
        field.set(qn('w:instr'), instruction)
        field.append(make_run(text))
        p.append(field)
        return field

    def complex_field(self, instructions: List[str], texts: List[str], paragraph=None):
        """begin, one instrText run per instruction part, separate, result runs, end."""
        p = paragraph if paragraph is not None else self.paragraph()
        p.append(make_fld_char('begin'))
        for instruction in instructions:
            p.append(make_instr_run(instruction))
        p.append(make_fld_char('separate'))
        for text in texts:
            p.append(make_run(text))
        p.append(make_fld_char('end'))
        return p

    def field_wrapped_link(self, url: str, text: str, paragraph=None) -> str:
        """<w:fldSimple HYPERLINK "url"> around <w:hyperlink r:id> to the same url."""
        p = paragraph if paragraph is not None else self.paragraph()
        field = OxmlElement('w:fldSimple')
        field.set(qn('w:instr'), f'HYPERLINK "{url}"')
        p.append(field)
        return self.external_link(url, text, paragraph=field)


@pytest.fixture(autouse=True)
def fresh_config():
    """Each test starts from the environment configuration."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def builder() -> DocBuilder:
    return DocBuilder()


@pytest.fixture
def metadata() -> LookupResult:
    """Lookup result with a 5-digit Content_ID (suffix 012345)."""
    return LookupResult(title="T", status="Released", content_id="CMS-TEST-12345", document_id="DOC1")


@pytest.fixture
def policy_metadata() -> LookupResult:
    return LookupResult(title="Policy Manual", status="Released",
                        content_id="CMS-POL-123456", document_id="ABC-123")


@pytest.fixture
def canonical_url():
    return lambda document_id: CANONICAL_PREFIX + document_id
