"""
Formatting Service
==================
Document-wide normalization passes run after hyperlink repair.

Passes:
- normalize_spaces: collapse runs of ASCII spaces inside text nodes
- fix_top_of_document_links: turn "Top of Document" lines into right-aligned
  links to a DocStart bookmark
- ensure_styles: create or update Normal, Heading 1, Heading 2 and Hyperlink
- center_images: center paragraphs holding a drawing

None of the passes use the hyperlink index. Each pass can run on its own and
running a pass twice makes no further edits.
"""

from typing import Callable, Dict, Tuple

from docx.enum.style import WD_STYLE_TYPE
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor
from docx.text.paragraph import Paragraph

from config_logging import get_logger, ValidationError

from .docx_tree import (
    W_DRAWING, W_HYPERLINK, W_T,
    iter_paragraphs, nearest_paragraph, paragraph_runs, paragraph_text, set_preserve_space,
)
from .models import StyleReport
from .patterns import collapse_spaces, is_top_of_document_text

logger = get_logger('doc_medic.formatting')

DOC_START_BOOKMARK = "DocStart"
FONT_NAME = "Verdana"
BLACK = RGBColor(0x00, 0x00, 0x00)
BLUE = RGBColor(0x00, 0x00, 0xFF)

NON_BREAKING_SPACE = '\u00a0'

W_BOOKMARK_START = qn('w:bookmarkStart')
W_ANCHOR = qn('w:anchor')
W_NAME = qn('w:name')
W_ID = qn('w:id')

# style_id -> (name, type, properties)
STANDARD_STYLES: Dict[str, Tuple[str, WD_STYLE_TYPE, Dict]] = {
    'Normal': ("Normal", WD_STYLE_TYPE.PARAGRAPH, {
        'size': 12, 'bold': None, 'color': BLACK,
        'space_before': 6, 'space_after': None, 'alignment': None,
    }),
    'Heading1': ("Heading 1", WD_STYLE_TYPE.PARAGRAPH, {
        'size': 18, 'bold': True, 'color': BLACK,
        'space_before': 0, 'space_after': 12, 'alignment': WD_ALIGN_PARAGRAPH.LEFT,
    }),
    'Heading2': ("Heading 2", WD_STYLE_TYPE.PARAGRAPH, {
        'size': 14, 'bold': True, 'color': BLACK,
        'space_before': 6, 'space_after': 6, 'alignment': WD_ALIGN_PARAGRAPH.LEFT,
    }),
    'Hyperlink': ("Hyperlink", WD_STYLE_TYPE.CHARACTER, {
        'size': 12, 'bold': None, 'color': BLUE, 'underline': True,
    }),
}


class FormattingService:
    """
    Formatting passes over a python-docx Document.

    Example:
        service = FormattingService()
        service.normalize_spaces(document)
        report = service.ensure_styles(document)
    """

    # -------------------------------------------------------------------------
    # Whitespace
    # -------------------------------------------------------------------------

    def normalize_spaces(self, document) -> int:
        """
        Collapse two or more ASCII spaces to one inside every text node.
        Text nodes holding a non-breaking space are left as they are.

        Returns:
            Number of text nodes changed
        """
        _require_document(document)
        changed = 0

        for t in document.element.body.iter(W_T):
            original = t.text
            if not original or NON_BREAKING_SPACE in original:
                continue

            normalized = collapse_spaces(original)
            if normalized != original:
                t.text = normalized
                set_preserve_space(t, normalized)
                changed += 1

        logger.debug(f"Normalized spaces in {changed} text nodes")
        return changed

    # -------------------------------------------------------------------------
    # Top of Document
    # -------------------------------------------------------------------------

    def fix_top_of_document_links(self, document) -> int:
        """
        Point every "Top of Document" paragraph at the DocStart bookmark.

        The bookmark is created at the start of the first paragraph when it is
        missing. Matching paragraphs are right-aligned and their runs wrapped
        in an internal hyperlink styled with the Hyperlink character style.

        Returns:
            Number of paragraphs converted
        """
        _require_document(document)

        if not self._ensure_doc_start_bookmark(document):
            return 0

        fixed = 0
        for paragraph in iter_paragraphs(document):
            if not is_top_of_document_text(paragraph_text(paragraph)):
                continue
            if self._is_top_of_document_link(paragraph):
                continue
            try:
                self._convert_to_top_of_document_link(paragraph)
                fixed += 1
            except Exception as e:
                logger.warning(f"Failed to convert Top of Document paragraph: {e}")

        logger.debug(f"Fixed {fixed} Top of Document links")
        return fixed

    @staticmethod
    def _ensure_doc_start_bookmark(document) -> bool:
        body = document.element.body
        existing_ids = []
        for bookmark in body.iter(W_BOOKMARK_START):
            if (bookmark.get(W_NAME) or '').lower() == DOC_START_BOOKMARK.lower():
                return True
            try:
                existing_ids.append(int(bookmark.get(W_ID)))
            except (TypeError, ValueError):
                continue

        first_paragraph = body.find(qn('w:p'))
        if first_paragraph is None:
            logger.warning("No paragraphs in document body, cannot add DocStart bookmark")
            return False

        bookmark_id = str(max(existing_ids, default=0) + 1)
        start = OxmlElement('w:bookmarkStart', attrs={W_ID: bookmark_id, W_NAME: DOC_START_BOOKMARK})
        end = OxmlElement('w:bookmarkEnd', attrs={W_ID: bookmark_id})

        # Paragraph properties must stay the first child
        position = 1 if first_paragraph.pPr is not None else 0
        first_paragraph.insert(position, start)
        first_paragraph.insert(position + 1, end)
        logger.debug("Created DocStart bookmark", bookmark_id=bookmark_id)
        return True

    @staticmethod
    def _is_top_of_document_link(paragraph) -> bool:
        if Paragraph(paragraph, None).alignment != WD_ALIGN_PARAGRAPH.RIGHT:
            return False
        for run in paragraph_runs(paragraph):
            parent = run.getparent()
            if parent.tag != W_HYPERLINK or parent.get(W_ANCHOR) != DOC_START_BOOKMARK:
                return False
        return True

    @staticmethod
    def _convert_to_top_of_document_link(paragraph):
        Paragraph(paragraph, None).alignment = WD_ALIGN_PARAGRAPH.RIGHT

        hyperlink = OxmlElement('w:hyperlink', attrs={W_ANCHOR: DOC_START_BOOKMARK})
        for run in paragraph_runs(paragraph):
            run.get_or_add_rPr().style = 'Hyperlink'
            run.getparent().remove(run)
            hyperlink.append(run)

        for old_link in paragraph.findall(W_HYPERLINK):
            if nearest_paragraph(old_link) is paragraph and len(old_link) == 0:
                paragraph.remove(old_link)

        paragraph.append(hyperlink)

    # -------------------------------------------------------------------------
    # Styles
    # -------------------------------------------------------------------------

    def ensure_styles(self, document) -> StyleReport:
        """
        Create or update the standard styles and count where they are used.

        Failures are reported in the returned StyleReport instead of raised.
        """
        _require_document(document)

        try:
            styles_part_created = not any(
                rel.reltype == RT.STYLES for rel in document.part.rels.values())
            styles = document.styles
            before = styles.element.xml

            report = StyleReport(styles_part_created=styles_part_created)
            for style_id, (name, style_type, properties) in STANDARD_STYLES.items():
                created = self._ensure_style(styles, style_id, name, style_type, properties)
                setattr(report, f"{style_id.lower()}_style_created", created)

            body = document.element.body
            report.normal_styles_applied = _count_paragraph_style(body, 'Normal')
            report.heading1_styles_applied = _count_paragraph_style(body, 'Heading1')
            report.heading2_styles_applied = _count_paragraph_style(body, 'Heading2')
            report.hyperlink_styles_applied = _count_run_style(body, 'Hyperlink')
            report.styles_modified = styles_part_created or styles.element.xml != before

        except Exception as e:
            logger.error(f"Style standardization failed: {e}", exc_info=True)
            return StyleReport.with_warnings(f"Style standardization failed: {e}")

        logger.debug(f"Style standardization complete: {report.total_style_changes} styled elements",
                     modified=report.styles_modified)
        return report

    @staticmethod
    def _find_style(styles, style_id: str):
        for style in styles:
            if (style.style_id or '').lower() == style_id.lower():
                return style
        return None

    def _ensure_style(self, styles, style_id: str, name: str,
                      style_type: WD_STYLE_TYPE, properties: Dict) -> bool:
        style = self._find_style(styles, style_id)
        created = style is None
        if created:
            style = styles.add_style(name, style_type)
            style.quick_style = True
            if style_id == 'Normal':
                style.element.set(qn('w:default'), '1')
            logger.debug(f"Created {name} style")

        font = style.font
        if font.name != FONT_NAME:
            font.name = FONT_NAME
        rFonts = style.element.get_or_add_rPr().get_or_add_rFonts()
        if rFonts.get(qn('w:cs')) != FONT_NAME:
            rFonts.set(qn('w:cs'), FONT_NAME)
        if font.size != Pt(properties['size']):
            font.size = Pt(properties['size'])
        if font.color.rgb != properties['color']:
            font.color.rgb = properties['color']
        if properties['bold'] is not None and font.bold != properties['bold']:
            font.bold = properties['bold']
        if properties.get('underline') and font.underline is not True:
            font.underline = True

        if style_type == WD_STYLE_TYPE.PARAGRAPH:
            paragraph_format = style.paragraph_format
            if paragraph_format.line_spacing != 1.0:
                paragraph_format.line_spacing = 1.0
            if paragraph_format.space_before != Pt(properties['space_before']):
                paragraph_format.space_before = Pt(properties['space_before'])
            if (properties['space_after'] is not None and
                    paragraph_format.space_after != Pt(properties['space_after'])):
                paragraph_format.space_after = Pt(properties['space_after'])
            if (properties['alignment'] is not None and
                    paragraph_format.alignment != properties['alignment']):
                paragraph_format.alignment = properties['alignment']

        return created

    # -------------------------------------------------------------------------
    # Images and selective styling
    # -------------------------------------------------------------------------

    def center_images(self, document) -> int:
        """Center every paragraph that holds a drawing. Returns paragraphs changed."""
        _require_document(document)
        centered = 0

        for element in iter_paragraphs(document):
            if next(element.iter(W_DRAWING), None) is None:
                continue
            paragraph = Paragraph(element, None)
            if paragraph.alignment != WD_ALIGN_PARAGRAPH.CENTER:
                paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
                centered += 1

        logger.debug(f"Centered {centered} image paragraphs")
        return centered

    def apply_style_selectively(self, document, style_id: str,
                                predicate: Callable[[str], bool]) -> int:
        """
        Set the paragraph style of every paragraph whose text satisfies
        predicate. Returns the number of paragraphs styled.
        """
        _require_document(document)
        if not style_id:
            raise ValidationError("Style id cannot be empty", field='style_id')
        if predicate is None:
            raise ValidationError("Predicate cannot be None", field='predicate')

        applied = 0
        for paragraph in iter_paragraphs(document):
            if predicate(paragraph_text(paragraph)):
                paragraph.get_or_add_pPr().style = style_id
                applied += 1
        return applied


def _require_document(document):
    if document is None:
        raise ValidationError("Document cannot be None", field='document')


def _count_paragraph_style(body, style_id: str) -> int:
    target = style_id.lower()
    return sum(
        1 for p in body.iter(qn('w:p'))
        if any(v.lower() == target for v in p.xpath('./w:pPr/w:pStyle/@w:val'))
    )


def _count_run_style(body, style_id: str) -> int:
    return sum(1 for r in body.iter(qn('w:r')) if style_id in r.xpath('./w:rPr/w:rStyle/@w:val'))
