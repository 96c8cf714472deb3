"""
Doc Medic
=========
Hyperlink indexing and repair for Word (.docx) documents that link into
The Source (Nuxeo), plus the formatting clean-up passes run alongside it.

Features:
- Index external, internal-anchor and HYPERLINK field-code links
- Resolve Document_IDs / Content_IDs through the lookup API
- Rewrite targets to the canonical Nuxeo URL and append " (NNNNNN)" suffixes
- Collapse double spaces, fix "Top of Document" links, standardize styles,
  center images
- Concurrent batch processing with backups and atomic saves

Version: reads from version.json
"""

from config_logging import VERSION

__version__ = VERSION
__author__ = "DocMedic"

from .models import (
    LinkKind,
    FieldType,
    TextRange,
    HyperlinkRef,
    LookupResult,
    ProcessOptions,
    StyleReport,
    FileResult,
    ProcessSummary,
)

from .patterns import (
    NUXEO_BASE_URL,
    extract_document_id,
    extract_content_id,
    contains_document_id,
    contains_content_id,
    is_eligible_url,
    build_canonical_url,
    derive_display_suffix,
)

from .indexer import HyperlinkIndex, HyperlinkIndexBuilder, build_index, validate_index
from .repair import HyperlinkRepairEngine
from .lookup import LookupClient, build_lookup_map
from .formatting import FormattingService
from .processor import DocumentProcessor

__all__ = [
    '__version__',
    # Models
    'LinkKind',
    'FieldType',
    'TextRange',
    'HyperlinkRef',
    'LookupResult',
    'ProcessOptions',
    'StyleReport',
    'FileResult',
    'ProcessSummary',
    # Patterns
    'NUXEO_BASE_URL',
    'extract_document_id',
    'extract_content_id',
    'contains_document_id',
    'contains_content_id',
    'is_eligible_url',
    'build_canonical_url',
    'derive_display_suffix',
    # Core
    'HyperlinkIndex',
    'HyperlinkIndexBuilder',
    'build_index',
    'validate_index',
    'HyperlinkRepairEngine',
    # Services
    'LookupClient',
    'build_lookup_map',
    'FormattingService',
    'DocumentProcessor',
]
