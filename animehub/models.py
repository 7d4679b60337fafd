# animehub/models.py
import math
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class Author:
    id: Optional[str]
    name: str


@dataclass
class Anime:
    id: Optional[str]
    title: str
    release_year: int
    author_id: str
    score: Optional[float] = None  # 0.0-10.0

    def triple(self):
        return (self.title, self.release_year, self.author_id)


@dataclass
class ImportRecord:
    """One element of an uploaded JSON array. Never persisted as-is."""
    title: Optional[str] = None
    author: Optional[str] = None
    year: Optional[int] = None
    score: Optional[float] = None

    @classmethod
    def from_json(cls, value: Any) -> "ImportRecord":
        """
        Build a record from a decoded JSON value.
        Raises TypeError when the value (or one of its known keys) has the wrong type.
        Missing keys stay None; unknown keys are ignored.
        """
        if not isinstance(value, dict):
            raise TypeError(f"expected an object, got {type(value).__name__}")
        title = value.get("title")
        author = value.get("author")
        year = value.get("year")
        score = value.get("score")
        if title is not None and not isinstance(title, str):
            raise TypeError("title must be a string")
        if author is not None and not isinstance(author, str):
            raise TypeError("author must be a string")
        if year is not None and (isinstance(year, bool) or not isinstance(year, int)):
            raise TypeError("year must be an integer")
        if score is not None:
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                raise TypeError("score must be a number")
            if not math.isfinite(score):
                raise ValueError("score must be finite")
            score = float(score)
        return cls(title=title, author=author, year=year, score=score)


@dataclass
class ImportResult:
    successful: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"successfulImportCount": self.successful, "failedImportCount": self.failed}


@dataclass
class EmailMessage:
    recipient: str
    subject: str
    body: str


@dataclass
class Page:
    items: List[Anime] = field(default_factory=list)
    page: int = 0
    size: int = 20
    total: int = 0

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size
