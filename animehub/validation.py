# animehub/validation.py
"""
Field checks for request payloads and import records.

Every function returns a list of Violation; an empty list means the input is valid.
Callers decide whether a violation aborts the operation (direct create/update)
or only counts as a failed record (bulk import).
"""
import math
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional

MIN_YEAR = 1900
MAX_YEAR = 2100
MIN_SCORE = 0.0
MAX_SCORE = 10.0
MAX_TITLE_LEN = 255
MAX_AUTHOR_NAME_LEN = 100
MAX_PAGE = 100000
MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 1000


@dataclass(frozen=True)
class Violation:
    field: str
    message: str

    def __str__(self):
        return f"{self.field}: {self.message}"


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_blank(value: Optional[str]) -> bool:
    return value is None or not isinstance(value, str) or not value.strip()


def is_uuid(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def check_year(value: Any, field: str = "releaseYear", required: bool = True) -> List[Violation]:
    if value is None:
        return [Violation(field, "Release year is required")] if required else []
    if not _is_int(value):
        return [Violation(field, "must be an integer")]
    if value < MIN_YEAR or value > MAX_YEAR:
        return [Violation(field, f"Release year must be between {MIN_YEAR} and {MAX_YEAR}")]
    return []


def check_score(value: Any, field: str = "score") -> List[Violation]:
    if value is None:
        return []
    if not _is_number(value) or not math.isfinite(value):
        return [Violation(field, "must be a number")]
    if value < MIN_SCORE or value > MAX_SCORE:
        return [Violation(field, f"must be between {MIN_SCORE} and {MAX_SCORE}")]
    return []


def validate_author_fields(name: Any) -> List[Violation]:
    if is_blank(name):
        return [Violation("name", "Author name cannot be empty")]
    if len(name) > MAX_AUTHOR_NAME_LEN:
        return [Violation("name", f"Name must be 1-{MAX_AUTHOR_NAME_LEN} chars")]
    return []


def validate_anime_fields(title: Any, release_year: Any, score: Any, author_id: Any) -> List[Violation]:
    """Checks applied before an Anime is built from a create/update request."""
    out: List[Violation] = []
    if is_blank(title):
        out.append(Violation("title", "Title cannot be empty"))
    elif len(title) > MAX_TITLE_LEN:
        out.append(Violation("title", f"size must be between 1 and {MAX_TITLE_LEN}"))
    out.extend(check_score(score))
    out.extend(check_year(release_year))
    if author_id is None:
        out.append(Violation("authorId", "Author ID cannot be null"))
    elif not is_uuid(author_id):
        out.append(Violation("authorId", "must be a valid UUID"))
    return out


def validate_filter(author_id: Any = None, release_year: Any = None) -> List[Violation]:
    out: List[Violation] = []
    if author_id is not None and not is_uuid(author_id):
        out.append(Violation("authorId", "must be a valid UUID"))
    out.extend(check_year(release_year, required=False))
    return out


def validate_page_request(page: Any, size: Any) -> List[Violation]:
    out: List[Violation] = []
    if not _is_int(page) or page < 0 or page > MAX_PAGE:
        out.append(Violation("page", f"must be between 0 and {MAX_PAGE}"))
    if not _is_int(size) or size < MIN_PAGE_SIZE or size > MAX_PAGE_SIZE:
        out.append(Violation("size", f"must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}"))
    return out


def validate_import_record(record) -> List[Violation]:
    """
    Checks for one decoded import record. Title, author and year are required;
    year and score use the same ranges as a direct create.
    """
    out: List[Violation] = []
    if is_blank(record.title):
        out.append(Violation("title", "missing"))
    elif len(record.title) > MAX_TITLE_LEN:
        out.append(Violation("title", "too long"))
    if is_blank(record.author):
        out.append(Violation("author", "missing"))
    out.extend(check_year(record.year, field="year"))
    out.extend(check_score(record.score))
    return out
