"""
Hyperlink Patterns
==================
Regex patterns and pure helpers for identifying eligible hyperlinks.

Two identifier families are recognized:
- Document_ID: the value of a ``?docid=`` query marker (case-insensitive marker)
- Content_ID:  ``CMS-...-NNNNNN`` or ``TSRC-...-NNNNNN`` (case-sensitive prefix)

Nothing in this module touches a document; every function is a pure
string operation and safe to call from any thread.
"""

import re
from typing import Optional

from config_logging import ValidationError


# Canonical base URL for Nuxeo document links
NUXEO_BASE_URL = "http://thesource.cvshealth.com/nuxeo/thesource/#!/view?docid="

DOCUMENT_ID_MARKER = "?docid="

# Value after ?docid= up to #, & or whitespace. May be empty.
DOCUMENT_ID_PATTERN = re.compile(r'\?docid=([^#&\s]*)', re.IGNORECASE)

# (CMS|TSRC)-<alnum/dash>+-<6 digits>, whole word, case-sensitive
CONTENT_ID_PATTERN = re.compile(r'\b(?:CMS|TSRC)-[A-Za-z0-9\-]+-\d{6}\b')

LAST_6_DIGITS_PATTERN = re.compile(r'(\d{6})$')
LAST_5_DIGITS_PATTERN = re.compile(r'(\d{5})$')

# Existing display suffix such as " (123456)" or " (012345)"
DISPLAY_SUFFIX_PATTERN = re.compile(r'\s*\(0*\d{5,6}\)\s*$')

# Two or more ASCII spaces (tabs and U+00A0 are not touched)
MULTIPLE_SPACES_PATTERN = re.compile(r' {2,}')

TOP_OF_DOCUMENT_PATTERN = re.compile(r'^\s*top\s+of\s+document\s*$', re.IGNORECASE)

# HYPERLINK "url" inside a field instruction
HYPERLINK_FIELD_PATTERN = re.compile(r'HYPERLINK\s+"([^"]+)"', re.IGNORECASE)

DEFAULT_DISPLAY_SUFFIX = "000000"


def contains_document_id(url: Optional[str]) -> bool:
    """True if the URL carries a ?docid= marker (any case)."""
    if not url:
        return False
    return DOCUMENT_ID_MARKER in url.lower()


def contains_content_id(url: Optional[str]) -> bool:
    """True if a Content_ID appears anywhere in the string."""
    if not url:
        return False
    return CONTENT_ID_PATTERN.search(url) is not None


def is_eligible_url(url: Optional[str]) -> bool:
    """A hyperlink target is eligible for repair if it has a Document_ID or Content_ID."""
    return contains_document_id(url) or contains_content_id(url)


def extract_document_id(url: Optional[str]) -> Optional[str]:
    """
    Extract the Document_ID from a URL.

    Returns None when there is no ?docid= marker. An empty string is a valid
    result: ``...?docid=&x=1`` yields ``""``, which callers must keep apart
    from "absent".
    """
    if not url:
        return None
    match = DOCUMENT_ID_PATTERN.search(url)
    return match.group(1) if match else None


def extract_content_id(text: Optional[str]) -> Optional[str]:
    """Return the first Content_ID found in text, or None."""
    if not text:
        return None
    match = CONTENT_ID_PATTERN.search(text)
    return match.group(0) if match else None


def build_canonical_url(document_id: Optional[str]) -> str:
    """
    Build the canonical Nuxeo URL for a Document_ID.

    Raises:
        ValidationError: if document_id is None, empty or whitespace only
    """
    if document_id is None or not document_id.strip():
        raise ValidationError("Document ID cannot be null or empty.", field='document_id')
    return NUXEO_BASE_URL + document_id


def is_canonical_url(url: Optional[str], document_id: str) -> bool:
    """Case-insensitive comparison against the canonical URL for document_id."""
    if url is None:
        return False
    return url.lower() == build_canonical_url(document_id).lower()


def derive_display_suffix(content_id: Optional[str]) -> str:
    """
    Derive the 6-digit display suffix from a Content_ID.

    The trailing 6 digits are used verbatim; 5 trailing digits are
    zero-padded; anything else gives "000000".
    """
    if not content_id:
        return DEFAULT_DISPLAY_SUFFIX

    match = LAST_6_DIGITS_PATTERN.search(content_id)
    if match:
        return match.group(1)

    match = LAST_5_DIGITS_PATTERN.search(content_id)
    if match:
        return "0" + match.group(1)

    return DEFAULT_DISPLAY_SUFFIX


def format_display_suffix(suffix: str) -> str:
    """Wrap a suffix the way it appears in display text: ' (NNNNNN)'."""
    return f" ({suffix})"


def find_display_suffix(text: str) -> Optional[re.Match]:
    """Locate an existing trailing display suffix, if any."""
    return DISPLAY_SUFFIX_PATTERN.search(text or "")


def collapse_spaces(text: str) -> str:
    """Collapse runs of ASCII spaces into one space."""
    return MULTIPLE_SPACES_PATTERN.sub(' ', text)


def is_top_of_document_text(text: Optional[str]) -> bool:
    """Whole-string, case-insensitive match against "Top of Document"."""
    if not text:
        return False
    return TOP_OF_DOCUMENT_PATTERN.match(text) is not None


def is_hyperlink_instruction(instruction: Optional[str]) -> bool:
    """True for field instructions of the form HYPERLINK ..."""
    if not instruction:
        return False
    return instruction.strip().upper().startswith('HYPERLINK')


def extract_field_target(instruction: Optional[str]) -> Optional[str]:
    """Pull the quoted target out of a HYPERLINK field instruction."""
    if not instruction:
        return None
    match = HYPERLINK_FIELD_PATTERN.search(instruction)
    return match.group(1) if match else None
