"""Entity-declaration and external-subset screening for markup input.

Runs on raw text before any parser sees it, so it applies whether or not the
document is well-formed.
"""

import re
from typing import Optional

import structlog

from schemagrid.exceptions import SecurityError

logger = structlog.get_logger()

XXE_PATTERNS = [
    ("entity_declaration", re.compile(r"<!ENTITY", re.IGNORECASE)),
    ("internal_subset", re.compile(r"<!DOCTYPE[^>]*\[", re.IGNORECASE | re.DOTALL)),
    ("system_identifier", re.compile(r"SYSTEM\s+[\"'][^\"']*[\"']", re.IGNORECASE)),
    ("public_identifier", re.compile(r"PUBLIC\s+[\"'][^\"']*[\"']", re.IGNORECASE)),
]


def find_xxe_pattern(text: str) -> Optional[str]:
    """Return the name of the first dangerous pattern found, if any."""
    for name, pattern in XXE_PATTERNS:
        if pattern.search(text):
            return name
    return None


def ensure_safe_markup(text: str, source: str = "schema") -> None:
    """Raise SecurityError when ``text`` carries entity/external-subset markers."""
    if not text:
        return
    pattern = find_xxe_pattern(text)
    if pattern is not None:
        logger.warning(
            "Rejected markup with entity or external subset declaration",
            security_event=True,
            pattern=pattern,
            source=source,
            length=len(text),
        )
        raise SecurityError(f"Potential XXE attack pattern detected ({pattern})")
