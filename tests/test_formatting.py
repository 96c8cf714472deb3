"""
Tests for Formatting Service
============================
"""

from unittest.mock import patch

import pytest
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt
from docx.text.paragraph import Paragraph

from config_logging import ValidationError
from doc_medic.docx_tree import iter_paragraphs, paragraph_runs, paragraph_text
from doc_medic.formatting import BLUE, DOC_START_BOOKMARK, FONT_NAME, FormattingService

from .conftest import make_run


@pytest.fixture
def service():
    return FormattingService()


def _bookmarks(document):
    return [b.get(qn('w:name')) for b in document.element.body.iter(qn('w:bookmarkStart'))]


class TestNormalizeSpaces:
    """Tests for normalize_spaces."""

    def test_collapses_ascii_spaces(self, builder, service):
        builder.paragraph("Policy  manual   text")
        builder.paragraph("Already fine")

        assert service.normalize_spaces(builder.document) == 1
        assert paragraph_text(iter_paragraphs(builder.document)[0]) == "Policy manual text"

    def test_non_breaking_spaces_untouched(self, builder, service):
        builder.paragraph("keep\u00a0\u00a0this  node")
        assert service.normalize_spaces(builder.document) == 0
        assert paragraph_text(iter_paragraphs(builder.document)[0]) == "keep\u00a0\u00a0this  node"

    def test_tabs_untouched(self, builder, service):
        builder.paragraph("a\t\tb")
        assert service.normalize_spaces(builder.document) == 0

    def test_second_pass_is_no_op(self, builder, service):
        builder.paragraph("a  b")
        service.normalize_spaces(builder.document)
        assert service.normalize_spaces(builder.document) == 0

    def test_hyperlink_text_is_normalized(self, builder, service):
        builder.external_link("http://x", "Link  text")
        assert service.normalize_spaces(builder.document) == 1

    def test_none_document(self, service):
        with pytest.raises(ValidationError):
            service.normalize_spaces(None)


class TestTopOfDocument:
    """Tests for fix_top_of_document_links."""

    def test_converts_paragraph_and_adds_bookmark(self, builder, service):
        builder.paragraph("Introduction")
        builder.paragraph("Top of Document")
        document = builder.document

        assert service.fix_top_of_document_links(document) == 1

        assert _bookmarks(document) == [DOC_START_BOOKMARK]
        first = iter_paragraphs(document)[0]
        assert first.find(qn('w:bookmarkStart')) is not None

        p = iter_paragraphs(document)[1]
        assert Paragraph(p, None).alignment == WD_ALIGN_PARAGRAPH.RIGHT
        runs = paragraph_runs(p)
        assert runs
        for run in runs:
            parent = run.getparent()
            assert parent.tag == qn('w:hyperlink')
            assert parent.get(qn('w:anchor')) == DOC_START_BOOKMARK
            assert run.xpath('./w:rPr/w:rStyle/@w:val') == ['Hyperlink']
        assert paragraph_text(p) == "Top of Document"

    def test_bookmark_follows_paragraph_properties(self, builder, service):
        first = builder.paragraph("Title")
        Paragraph(first, None).alignment = WD_ALIGN_PARAGRAPH.CENTER
        builder.paragraph("top of document")

        service.fix_top_of_document_links(builder.document)

        assert first[0].tag == qn('w:pPr')
        assert first[1].tag == qn('w:bookmarkStart')

    def test_is_idempotent(self, builder, service):
        builder.paragraph("Intro")
        builder.paragraph("  TOP OF DOCUMENT ")
        document = builder.document

        assert service.fix_top_of_document_links(document) == 1
        assert service.fix_top_of_document_links(document) == 0
        assert _bookmarks(document) == [DOC_START_BOOKMARK]

    def test_existing_bookmark_reused(self, builder, service):
        first = builder.paragraph("Intro")
        first.insert(0, OxmlElement('w:bookmarkStart',
                                    attrs={qn('w:id'): '7', qn('w:name'): 'docstart'}))
        builder.paragraph("Top of Document")

        service.fix_top_of_document_links(builder.document)
        assert _bookmarks(builder.document) == ['docstart']

    def test_bookmark_id_is_unique(self, builder, service):
        first = builder.paragraph("Intro")
        first.insert(0, OxmlElement('w:bookmarkStart',
                                    attrs={qn('w:id'): '4', qn('w:name'): '_Toc1'}))
        builder.paragraph("Top of Document")

        service.fix_top_of_document_links(builder.document)

        ids = {b.get(qn('w:name')): b.get(qn('w:id'))
               for b in builder.document.element.body.iter(qn('w:bookmarkStart'))}
        assert ids[DOC_START_BOOKMARK] == '5'

    def test_existing_external_link_replaced(self, builder, service):
        builder.paragraph("Intro")
        builder.external_link("http://x", "Top of Document")
        document = builder.document

        assert service.fix_top_of_document_links(document) == 1
        p = iter_paragraphs(document)[1]
        links = p.findall(qn('w:hyperlink'))
        assert len(links) == 1
        assert links[0].get(qn('w:anchor')) == DOC_START_BOOKMARK

    def test_other_text_ignored(self, builder, service):
        builder.paragraph("Intro")
        builder.paragraph("Back to Top of Document")
        assert service.fix_top_of_document_links(builder.document) == 0

    def test_empty_document(self, builder, service):
        assert service.fix_top_of_document_links(builder.document) == 0


class TestEnsureStyles:
    """Tests for ensure_styles."""

    def test_standard_styles_configured(self, builder, service):
        document = builder.document
        document.add_heading("Chapter", level=1)
        document.add_heading("Section", level=2)

        report = service.ensure_styles(document)

        assert report.styles_modified
        assert not report.styles_part_created
        assert report.heading1_styles_applied == 1
        assert report.heading2_styles_applied == 1
        assert not report.warnings

        normal = document.styles['Normal']
        assert normal.font.name == FONT_NAME
        assert normal.font.size == Pt(12)
        assert normal.paragraph_format.space_before == Pt(6)

        heading1 = document.styles['Heading 1']
        assert heading1.font.size == Pt(18)
        assert heading1.font.bold is True
        assert heading1.paragraph_format.space_after == Pt(12)
        assert heading1.paragraph_format.alignment == WD_ALIGN_PARAGRAPH.LEFT

        hyperlink = next(s for s in document.styles if s.style_id == 'Hyperlink')
        assert hyperlink.font.color.rgb == BLUE
        assert hyperlink.font.underline is True

    def test_second_pass_modifies_nothing(self, builder, service):
        document = builder.document
        service.ensure_styles(document)

        report = service.ensure_styles(document)

        assert not report.styles_modified
        assert not report.normal_style_created
        assert not report.heading1_style_created
        assert not report.heading2_style_created
        assert not report.hyperlink_style_created

    def test_counts_hyperlink_runs(self, builder, service):
        p = builder.paragraph()
        run = make_run("link")
        rPr = OxmlElement('w:rPr')
        rStyle = OxmlElement('w:rStyle')
        rStyle.set(qn('w:val'), 'Hyperlink')
        rPr.append(rStyle)
        run.insert(0, rPr)
        p.append(run)

        assert service.ensure_styles(builder.document).hyperlink_styles_applied == 1

    def test_failure_reported_as_warning(self, builder, service):
        with patch.object(FormattingService, '_ensure_style', side_effect=RuntimeError("boom")):
            report = service.ensure_styles(builder.document)
        assert report.warnings
        assert "boom" in report.warnings[0]
        assert not report.styles_modified


class TestImagesAndSelectiveStyling:
    """Tests for center_images and apply_style_selectively."""

    def test_center_images(self, builder, service):
        p = builder.paragraph()
        run = make_run(None)
        run.append(OxmlElement('w:drawing'))
        p.append(run)
        builder.paragraph("Text only")

        assert service.center_images(builder.document) == 1
        assert Paragraph(p, None).alignment == WD_ALIGN_PARAGRAPH.CENTER
        assert service.center_images(builder.document) == 0

    def test_apply_style_selectively(self, builder, service):
        builder.paragraph("Chapter 1")
        builder.paragraph("Body text")
        builder.paragraph("Chapter 2")

        applied = service.apply_style_selectively(
            builder.document, 'Heading1', lambda text: text.startswith("Chapter"))

        assert applied == 2
        styled = [p.xpath('./w:pPr/w:pStyle/@w:val') for p in iter_paragraphs(builder.document)]
        assert styled == [['Heading1'], [], ['Heading1']]

    def test_apply_style_validates_arguments(self, builder, service):
        with pytest.raises(ValidationError):
            service.apply_style_selectively(builder.document, '', lambda text: True)
        with pytest.raises(ValidationError):
            service.apply_style_selectively(builder.document, 'Heading1', None)
