# animehub/importer.py
"""
Bulk import of anime from an uploaded JSON array.

The upload is read as a stream: JsonArrayStream pulls one top-level array
element at a time, so memory stays bounded by the largest element plus one
read chunk. Each element is decoded, validated, matched to an existing author
and checked for duplicates; accepted records are staged and written in
batches. A bad element only counts as a failure; it never aborts the import.
"""
import codecs
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from animehub.errors import InvalidInputError
from animehub.models import Anime, Author, ImportRecord, ImportResult
from animehub.repo import RepoError
from animehub.validation import validate_import_record

logger = logging.getLogger(__name__)

BATCH_SIZE = 200
CHUNK_SIZE = 64 * 1024
JSON_MEDIA_TYPE = "application/json"

# JsonArrayStream states
EXPECT_ARRAY_START = "expect_array_start"
EXPECT_ELEMENT = "expect_element"
DONE = "done"

_WHITESPACE = " \t\r\n"

# undecodable input bytes come through surrogateescape as U+DC80..U+DCFF
_BAD_BYTES = re.compile("[\udc80-\udcff]")


@dataclass
class ArrayElement:
    """One top-level array element: the decoded value, or the error that prevented decoding."""
    index: int
    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class JsonArrayStream:
    """
    Pull-based reader over a byte stream holding a JSON array.

    open() consumes the opening bracket (or rejects the input); iterating then
    yields ArrayElement objects in order. Element boundaries are found by
    scanning for a comma or closing bracket at nesting depth zero outside of
    strings, so a malformed element is skipped without losing the ones after it.
    """

    def __init__(self, stream, head: bytes = b"", chunk_size: int = CHUNK_SIZE):
        self._stream = stream
        self._head = head
        self._chunk_size = chunk_size
        self._decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="surrogateescape")
        self._buf = ""
        self._pos = 0
        self._eof = False
        self.state = EXPECT_ARRAY_START

    def _fill(self) -> bool:
        """Append the next chunk to the buffer, dropping consumed text. False once input is exhausted."""
        if self._eof:
            return False
        if self._head:
            raw, self._head = self._head, b""
        else:
            raw = self._stream.read(self._chunk_size)
        if raw:
            text = self._decoder.decode(raw)
        else:
            text = self._decoder.decode(b"", final=True)
            self._eof = True
        self._buf = self._buf[self._pos:] + text
        self._pos = 0
        return bool(text) or not self._eof

    def _peek(self) -> str:
        """Next non-whitespace character, not consumed; '' at end of input."""
        while True:
            while self._pos < len(self._buf) and self._buf[self._pos] in _WHITESPACE:
                self._pos += 1
            if self._pos < len(self._buf):
                return self._buf[self._pos]
            if not self._fill():
                return ""

    def open(self) -> None:
        if self.state != EXPECT_ARRAY_START:
            return
        if self._peek() != "[":
            self.state = DONE
            raise InvalidInputError("JSON must be an array")
        self._pos += 1
        self.state = EXPECT_ELEMENT
        if self._peek() == "]":
            self._pos += 1
            self.state = DONE

    def _scan_element(self) -> Tuple[str, str]:
        """
        Consume the next element and its delimiter.
        Returns (element text, delimiter); the delimiter is ',' or ']', or '' when
        the input ends before the array is closed.
        """
        depth = 0
        in_string = False
        escaped = False
        offset = 0
        while True:
            i = self._pos + offset
            if i >= len(self._buf):
                if not self._fill():
                    text = self._buf[self._pos:]
                    self._pos = len(self._buf)
                    return text, ""
                continue
            ch = self._buf[i]
            offset += 1
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch in "{[":
                depth += 1
            elif ch in "}]":
                if depth == 0 and ch == "]":
                    break
                depth = max(depth - 1, 0)
            elif ch == "," and depth == 0:
                break
        text = self._buf[self._pos:self._pos + offset - 1]
        self._pos += offset
        return text, ch

    def __iter__(self) -> Iterator[ArrayElement]:
        self.open()
        index = 0
        while self.state == EXPECT_ELEMENT:
            text, delim = self._scan_element()
            if delim != ",":
                self.state = DONE
                if delim == "":
                    logger.warning("JSON array is not terminated; input ended after element %d", index)
                    if not text.strip():
                        return
            element = ArrayElement(index)
            if not text.strip():
                element.error = ValueError("empty array element")
            elif _BAD_BYTES.search(text):
                element.error = ValueError("element is not valid UTF-8")
            else:
                try:
                    element.value = json.loads(text)
                except (ValueError, RecursionError) as e:
                    element.error = e
            yield element
            index += 1


class AuthorResolver:
    """
    Finds authors by name (case-insensitively) for one import run.
    Hits are cached under the name exactly as it appeared in the input; misses are not cached.
    """

    def __init__(self, repo):
        self.repo = repo
        self._cache: Dict[str, Author] = {}

    def resolve(self, name: str) -> Optional[Author]:
        author = self._cache.get(name)
        if author is None:
            author = self.repo.find_author_by_name_ci(name)
            if author is None:
                return None
            self._cache[name] = author
        return author


class DuplicateDetector:
    def __init__(self, repo):
        self.repo = repo

    def exists(self, title: str, release_year: int, author) -> bool:
        author_id = author.id if isinstance(author, Author) else author
        return self.repo.anime_triple_exists(title, release_year, author_id)


def check_upload(head: bytes, filename: Optional[str], content_type: Optional[str]) -> None:
    """Reject an upload before any record is read."""
    if not head:
        raise InvalidInputError("File is empty")
    if content_type != JSON_MEDIA_TYPE:
        raise InvalidInputError("File content type must be application/json")
    if filename and not filename.lower().endswith(".json"):
        raise InvalidInputError("File extension must be .json")


class _ImportRun:
    """Mutable state of one import call."""

    def __init__(self, repo):
        self.resolver = AuthorResolver(repo)
        self.batch: List[Anime] = []
        self.pending: Set[Tuple[str, int, str]] = set()
        self.result = ImportResult()


class ImportPipeline:
    def __init__(self, repo, batch_size: int = BATCH_SIZE, chunk_size: int = CHUNK_SIZE):
        self.repo = repo
        self.batch_size = batch_size
        self.chunk_size = chunk_size
        self.duplicates = DuplicateDetector(repo)

    def run(self, stream, filename: Optional[str] = None, content_type: Optional[str] = None) -> ImportResult:
        """
        Import anime from a byte stream holding a JSON array of
        {"title", "author", "score", "year"} objects.
        Raises InvalidInputError for a rejected upload; otherwise always returns the tallies.
        """
        head = stream.read(self.chunk_size)
        check_upload(head, filename, content_type)
        reader = JsonArrayStream(stream, head=head, chunk_size=self.chunk_size)
        reader.open()

        run = _ImportRun(self.repo)
        for element in reader:
            reason = self._stage(run, element)
            if reason is not None:
                run.result.failed += 1
                logger.warning("import element %d rejected: %s", element.index, reason)
                continue
            if len(run.batch) >= self.batch_size:
                self._flush(run)
        if run.batch:
            self._flush(run)

        logger.info("Import of %s finished: success=%d failed=%d",
                    filename or "<upload>", run.result.successful, run.result.failed)
        return run.result

    def _stage(self, run: _ImportRun, element: ArrayElement) -> Optional[str]:
        """Add one element to the pending batch. Returns why it was rejected, or None."""
        if not element.ok:
            return f"malformed element ({element.error})"
        try:
            record = ImportRecord.from_json(element.value)
        except (TypeError, ValueError) as e:
            return f"cannot decode record ({e})"

        violations = validate_import_record(record)
        if violations:
            return "invalid fields: " + ", ".join(str(v) for v in violations)

        author = run.resolver.resolve(record.author)
        if author is None:
            return f"author not found: {record.author!r}"

        triple = (record.title, record.year, author.id)
        if triple in run.pending or self.duplicates.exists(record.title, record.year, author):
            return f"anime {record.title!r} ({record.year}) by {author.name!r} already exists"

        run.batch.append(Anime(id=None, title=record.title, release_year=record.year,
                               author_id=author.id, score=record.score))
        run.pending.add(triple)
        return None

    def _flush(self, run: _ImportRun) -> None:
        batch, run.batch, run.pending = run.batch, [], set()
        try:
            self.repo.create_animes(batch)
        except RepoError:
            logger.exception("Import batch of %d records discarded", len(batch))
            run.result.failed += len(batch)
            return
        run.result.successful += len(batch)
        logger.debug("Import batch of %d records saved", len(batch))
