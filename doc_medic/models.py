"""
Doc Medic Data Models
=====================
Dataclasses for hyperlink references, lookup results, processing options
and summaries.

TextRange and HyperlinkRef are snapshots taken when a document is indexed.
They are never updated in place: once the document is edited, rebuild the
index to get fresh values.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Optional, Any
import uuid

from config_logging import ValidationError

from .patterns import derive_display_suffix


class LinkKind(Enum):
    """The three shapes a hyperlink can take in a WordprocessingML body."""
    EXTERNAL = "external"                # <w:hyperlink r:id="...">
    INTERNAL_ANCHOR = "internal_anchor"  # <w:hyperlink w:anchor="...">
    FIELD_CODE = "field_code"            # HYPERLINK "url" field (simple or complex)


class FieldType(Enum):
    """Field-code representations."""
    SIMPLE = "simple"    # <w:fldSimple w:instr="HYPERLINK ...">
    COMPLEX = "complex"  # <w:fldChar begin/> <w:instrText/> ... <w:fldChar end/>


@dataclass(frozen=True)
class TextRange:
    """
    Location of a hyperlink's display text within one paragraph.

    Attributes:
        paragraph_index: Paragraph position in the document's linear traversal
        start_run_index: First run carrying display text
        end_run_index: Last run carrying display text (inclusive)
        start_char_offset: Offset into the first run
        end_char_offset: Offset into the last run (exclusive)
        text: Concatenated run text captured at index time
    """
    paragraph_index: int = 0
    start_run_index: int = 0
    end_run_index: int = 0
    start_char_offset: int = 0
    end_char_offset: int = 0
    text: str = ""

    def __post_init__(self):
        if self.start_run_index > self.end_run_index:
            raise ValidationError(
                f"start_run_index ({self.start_run_index}) is after "
                f"end_run_index ({self.end_run_index})",
                field='start_run_index'
            )

    @classmethod
    def for_single_run(cls, paragraph_index: int, run_index: int, text: str,
                       start_offset: int = 0) -> 'TextRange':
        return cls(
            paragraph_index=paragraph_index,
            start_run_index=run_index,
            end_run_index=run_index,
            start_char_offset=start_offset,
            end_char_offset=len(text),
            text=text,
        )

    @classmethod
    def for_multiple_runs(cls, paragraph_index: int, start_run_index: int, end_run_index: int,
                          text: str, start_char_offset: int = 0,
                          end_char_offset: int = 0) -> 'TextRange':
        return cls(
            paragraph_index=paragraph_index,
            start_run_index=start_run_index,
            end_run_index=end_run_index,
            start_char_offset=start_char_offset,
            end_char_offset=end_char_offset,
            text=text,
        )

    @property
    def is_single_run(self) -> bool:
        return self.start_run_index == self.end_run_index

    @property
    def run_count(self) -> int:
        return self.end_run_index - self.start_run_index + 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_hyperlink_id() -> str:
    """Process-local key for a hyperlink reference."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class HyperlinkRef:
    """
    A hyperlink occurrence found while indexing a document.

    Exactly one of relationship_id / anchor is set for EXTERNAL and
    INTERNAL_ANCHOR references. FIELD_CODE references carry neither; their
    target comes from the field instruction.

    Attributes:
        id: Process-local unique key
        kind: Which hyperlink shape this is
        target: External URI, or "#" + anchor for internal links
        display_text_range: Where the visible text lives
        relationship_id: r:id of an external link
        anchor: Bookmark name of an internal link
        field_type: SIMPLE or COMPLEX for field-code links
        instruction_run_index: Run holding the HYPERLINK instruction (complex fields)
    """
    id: str
    kind: LinkKind
    target: str
    display_text_range: TextRange = field(default_factory=TextRange)
    relationship_id: Optional[str] = None
    anchor: Optional[str] = None
    field_type: Optional[FieldType] = None
    instruction_run_index: Optional[int] = None

    @property
    def is_external_link(self) -> bool:
        return bool(self.relationship_id)

    @property
    def is_internal_anchor(self) -> bool:
        return bool(self.anchor)

    @property
    def is_field_code(self) -> bool:
        return self.kind is LinkKind.FIELD_CODE

    @property
    def display_text(self) -> str:
        return self.display_text_range.text

    @classmethod
    def for_external_link(cls, id: str, relationship_id: str, target: str,
                          display_text_range: TextRange) -> 'HyperlinkRef':
        return cls(
            id=id,
            kind=LinkKind.EXTERNAL,
            relationship_id=relationship_id,
            target=target,
            display_text_range=display_text_range,
        )

    @classmethod
    def for_internal_anchor(cls, id: str, anchor: str,
                            display_text_range: TextRange) -> 'HyperlinkRef':
        return cls(
            id=id,
            kind=LinkKind.INTERNAL_ANCHOR,
            anchor=anchor,
            target="#" + anchor,
            display_text_range=display_text_range,
        )

    @classmethod
    def for_field_code(cls, id: str, target: str, display_text_range: TextRange,
                       field_type: FieldType,
                       instruction_run_index: Optional[int] = None) -> 'HyperlinkRef':
        return cls(
            id=id,
            kind=LinkKind.FIELD_CODE,
            target=target,
            display_text_range=display_text_range,
            field_type=field_type,
            instruction_run_index=instruction_run_index,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'kind': self.kind.value,
            'target': self.target,
            'relationship_id': self.relationship_id,
            'anchor': self.anchor,
            'field_type': self.field_type.value if self.field_type else None,
            'display_text_range': self.display_text_range.to_dict(),
        }


@dataclass(frozen=True)
class LookupResult:
    """
    One resolved record from the lookup API.

    Attributes:
        title: Document title in The Source
        status: "Released" or "Expired"
        content_id: CMS-/TSRC- identifier
        document_id: Nuxeo docid
    """
    title: str
    status: str
    content_id: str
    document_id: str

    @property
    def is_released(self) -> bool:
        return (self.status or "").lower() == "released"

    def get_display_suffix(self) -> str:
        """Six-digit suffix derived from content_id (zero-padded if five)."""
        return derive_display_suffix(self.content_id)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_api_dict(cls, data: Dict[str, Any]) -> 'LookupResult':
        """
        Build from an API record. Keys are matched case-insensitively so
        both ``Content_ID`` and ``content_id`` are accepted.
        """
        lowered = {str(k).lower(): v for k, v in data.items()}
        return cls(
            title=lowered.get('title') or "",
            status=lowered.get('status') or "",
            content_id=lowered.get('content_id') or "",
            document_id=lowered.get('document_id') or "",
        )


# =============================================================================
# PROCESSING OPTIONS AND REPORTS
# =============================================================================

@dataclass
class ProcessOptions:
    """Which passes to run on each document."""
    collapse_double_spaces: bool = True
    fix_top_of_doc_links: bool = True
    standardize_styles: bool = True
    center_images: bool = True
    create_backup: bool = True

    @classmethod
    def default(cls) -> 'ProcessOptions':
        return cls()

    @classmethod
    def none(cls) -> 'ProcessOptions':
        """Hyperlink repair only."""
        return cls(
            collapse_double_spaces=False,
            fix_top_of_doc_links=False,
            standardize_styles=False,
            center_images=False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProcessOptions':
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


@dataclass
class StyleReport:
    """Style standardization changes made to one document."""
    normal_styles_applied: int = 0
    heading1_styles_applied: int = 0
    heading2_styles_applied: int = 0
    hyperlink_styles_applied: int = 0
    normal_style_created: bool = False
    heading1_style_created: bool = False
    heading2_style_created: bool = False
    hyperlink_style_created: bool = False
    styles_part_created: bool = False
    styles_modified: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def total_style_changes(self) -> int:
        return (self.normal_styles_applied + self.heading1_styles_applied +
                self.heading2_styles_applied + self.hyperlink_styles_applied)

    @classmethod
    def with_warnings(cls, *warnings: str) -> 'StyleReport':
        return cls(warnings=list(warnings))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['total_style_changes'] = self.total_style_changes
        return data


@dataclass
class FileResult:
    """Counters for a single processed file."""
    path: str
    was_modified: bool = False
    hyperlinks_inspected: int = 0
    hyperlinks_eligible: int = 0
    hyperlinks_repaired: int = 0
    style_changes: int = 0
    whitespace_changes: int = 0
    images_centered: int = 0
    top_of_document_links_fixed: int = 0
    styles_modified: bool = False
    warnings: List[str] = field(default_factory=list)

    @property
    def any_changes(self) -> bool:
        # style_changes counts paragraphs already using a standard style, so
        # it does not by itself mean the document was edited
        return (self.hyperlinks_repaired > 0 or self.whitespace_changes > 0 or
                self.top_of_document_links_fixed > 0 or self.styles_modified or
                self.images_centered > 0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProcessSummary:
    """Aggregate result for a batch of documents."""
    files_processed: int = 0
    files_changed: int = 0
    hyperlinks_inspected: int = 0
    hyperlinks_eligible: int = 0
    hyperlinks_repaired: int = 0
    style_changes: int = 0
    whitespace_changes: int = 0
    images_centered: int = 0
    top_of_document_links_fixed: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    files: List[FileResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def is_successful(self) -> bool:
        return not self.errors

    def add_file(self, result: FileResult):
        """Fold one file's counters into the totals."""
        self.files.append(result)
        self.files_processed += 1
        if result.was_modified:
            self.files_changed += 1
        self.hyperlinks_inspected += result.hyperlinks_inspected
        self.hyperlinks_eligible += result.hyperlinks_eligible
        self.hyperlinks_repaired += result.hyperlinks_repaired
        self.style_changes += result.style_changes
        self.whitespace_changes += result.whitespace_changes
        self.images_centered += result.images_centered
        self.top_of_document_links_fixed += result.top_of_document_links_fixed
        self.warnings.extend(result.warnings)

    def finish(self) -> 'ProcessSummary':
        self.end_time = _utcnow()
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'files_processed': self.files_processed,
            'files_changed': self.files_changed,
            'hyperlinks_inspected': self.hyperlinks_inspected,
            'hyperlinks_eligible': self.hyperlinks_eligible,
            'hyperlinks_repaired': self.hyperlinks_repaired,
            'style_changes': self.style_changes,
            'whitespace_changes': self.whitespace_changes,
            'images_centered': self.images_centered,
            'top_of_document_links_fixed': self.top_of_document_links_fixed,
            'warnings': list(self.warnings),
            'errors': list(self.errors),
            'files': [f.to_dict() for f in self.files],
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'duration_seconds': round(self.duration_seconds, 3),
            'cancelled': self.cancelled,
            'is_successful': self.is_successful,
        }
