# animehub/service.py
import logging
from typing import Dict, List, Optional, Tuple

from animehub.errors import (ConflictError, DuplicateError, InvalidInputError,  # noqa: F401
                             NotFoundError, ValidationError)
from animehub.importer import BATCH_SIZE, DuplicateDetector, ImportPipeline
from animehub.models import Anime, Author, ImportResult, Page
from animehub.notifier import EMAIL_NOTIFICATIONS_TOPIC, LogNotifier, new_anime_message
from animehub.repo import DuplicateKeyError, IntegrityViolation
from animehub.validation import (validate_anime_fields, validate_author_fields,
                                 validate_filter, validate_page_request)

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@example.com"
REPORT_FIELDS = ["ID", "Title", "Score", "Year", "Author"]


def _raise_if(violations) -> None:
    if violations:
        raise ValidationError.from_violations(violations)


class AnimeService:
    """
    Business logic for anime titles and their authors.
    The service expects a repository object exposing the methods used below
    (SqliteRepo or InMemoryRepo from animehub.repo).
    """

    def __init__(self, repo, notifier=None, admin_email: str = DEFAULT_ADMIN_EMAIL,
                 import_batch_size: int = BATCH_SIZE):
        self.repo = repo
        self.notifier = notifier or LogNotifier()
        self.admin_email = admin_email
        self.import_batch_size = import_batch_size
        self.duplicates = DuplicateDetector(repo)
        logger.debug("AnimeService initialized with repo %s, notifier %s",
                     type(repo).__name__, type(self.notifier).__name__)

    # ---- Authors ----
    def list_authors(self) -> List[Author]:
        return self.repo.list_authors()

    def get_author(self, author_id: str) -> Author:
        a = self.repo.get_author(author_id)
        if not a:
            logger.debug("get_author: author %s not found", author_id)
            raise NotFoundError("Author not found")
        return a

    def create_author(self, name: str) -> Author:
        """Create an author. Names are unique."""
        _raise_if(validate_author_fields(name))
        name = name.strip()
        if self.repo.author_name_exists(name):
            logger.warning("create_author: name %r already taken", name)
            raise DuplicateError(f"Author with name '{name}' already exists")
        try:
            created = self.repo.create_author(Author(id=None, name=name))
        except DuplicateKeyError:
            raise DuplicateError(f"Author with name '{name}' already exists")
        logger.info("Created author id=%s name=%s", created.id, created.name)
        return created

    def update_author(self, author_id: str, name: str) -> Author:
        current = self.repo.get_author(author_id)
        if not current:
            raise NotFoundError(f"Author with id '{author_id}' not found")
        _raise_if(validate_author_fields(name))
        updated = Author(id=author_id, name=name.strip())
        try:
            self.repo.update_author(updated)
        except DuplicateKeyError:
            logger.warning("update_author: name %r already taken", updated.name)
            raise DuplicateError(f"Author with name '{updated.name}' already exists")
        logger.info("Updated author id=%s", author_id)
        return updated

    def delete_author(self, author_id: str) -> None:
        if not self.repo.author_exists(author_id):
            raise NotFoundError(f"Author with id '{author_id}' not found")
        try:
            self.repo.delete_author(author_id)
        except IntegrityViolation:
            logger.warning("delete_author: author %s is still referenced", author_id)
            raise ConflictError(f"Author with id '{author_id}' still has anime")
        logger.info("Deleted author id=%s", author_id)

    # ---- Animes ----
    def _author_for(self, author_id: str) -> Author:
        author = self.repo.get_author(author_id)
        if not author:
            raise NotFoundError("Author not found")
        return author

    def _check_duplicate(self, title: str, release_year: int, author: Author) -> None:
        if self.duplicates.exists(title, release_year, author):
            logger.warning("Duplicate anime %r (%s) by %s", title, release_year, author.name)
            raise DuplicateError(
                f"Anime with title '{title}' and year {release_year} by author '{author.name}' already exists")

    def create_anime(self, title: str, release_year: int, score: Optional[float], author_id: str) -> Anime:
        """
        Create an anime. The (title, release year, author) triple must be new.
        The admin is notified afterwards; a failed notification does not undo the create.
        """
        _raise_if(validate_anime_fields(title, release_year, score, author_id))
        author = self._author_for(author_id)
        self._check_duplicate(title, release_year, author)
        a = Anime(id=None, title=title, release_year=release_year, author_id=author.id,
                  score=float(score) if score is not None else None)
        try:
            created = self.repo.create_anime(a)
        except DuplicateKeyError:
            # lost a race with a concurrent create of the same triple
            raise DuplicateError(
                f"Anime with title '{title}' and year {release_year} by author '{author.name}' already exists")
        except IntegrityViolation:
            logger.warning("create_anime: author %s vanished before the insert", author.id)
            raise ConflictError(f"Author with id '{author.id}' no longer exists")
        logger.info("Created anime id=%s title=%s", created.id, created.title)
        self._notify_new_anime(created, author)
        return created

    def _notify_new_anime(self, anime: Anime, author: Author) -> None:
        message = new_anime_message(anime, author.name, self.admin_email)
        try:
            self.notifier.publish(EMAIL_NOTIFICATIONS_TOPIC, message)
        except Exception as e:
            logger.error("Failed to publish new anime notification for %s: %s", anime.id, e)

    def get_anime(self, anime_id: str) -> Tuple[Anime, Author]:
        """Return the anime together with its author."""
        a = self.repo.get_anime(anime_id)
        if not a:
            raise NotFoundError(f"Anime with id '{anime_id}' not found")
        return a, self.repo.get_author(a.author_id)

    def update_anime(self, anime_id: str, title: str, release_year: int,
                     score: Optional[float], author_id: str) -> Anime:
        current = self.repo.get_anime(anime_id)
        if not current:
            raise NotFoundError(f"Anime with id '{anime_id}' not found")
        _raise_if(validate_anime_fields(title, release_year, score, author_id))
        author = self._author_for(author_id)
        if current.triple() != (title, release_year, author.id):
            self._check_duplicate(title, release_year, author)
        updated = Anime(id=anime_id, title=title, release_year=release_year, author_id=author.id,
                        score=float(score) if score is not None else None)
        try:
            self.repo.update_anime(updated)
        except DuplicateKeyError:
            raise DuplicateError(
                f"Anime with title '{title}' and year {release_year} by author '{author.name}' already exists")
        except IntegrityViolation:
            logger.warning("update_anime: author %s vanished before the update", author.id)
            raise ConflictError(f"Author with id '{author.id}' no longer exists")
        logger.info("Updated anime id=%s", anime_id)
        return updated

    def delete_anime(self, anime_id: str) -> None:
        if not self.repo.anime_exists(anime_id):
            raise NotFoundError(f"Anime with id '{anime_id}' not found")
        self.repo.delete_anime(anime_id)
        logger.info("Deleted anime id=%s", anime_id)

    def list_animes(self, author_id: Optional[str] = None, release_year: Optional[int] = None,
                    page: int = 0, size: int = 20) -> Page:
        """One page of animes, optionally filtered by author and release year."""
        _raise_if(validate_filter(author_id, release_year) + validate_page_request(page, size))
        return self.repo.query_animes(author_id=author_id, release_year=release_year, page=page, size=size)

    # ---- Report / Import ----
    def report_rows(self, author_id: Optional[str] = None, release_year: Optional[int] = None) -> List[dict]:
        """
        Rows for the CSV report, keyed by REPORT_FIELDS.
        Each dict: ID, Title, Score, Year, Author (author name)
        """
        _raise_if(validate_filter(author_id, release_year))
        names: Dict[str, str] = {}
        out = []
        for a in self.repo.list_animes(author_id=author_id, release_year=release_year):
            if a.author_id not in names:
                author = self.repo.get_author(a.author_id)
                names[a.author_id] = author.name if author else ""
            out.append({
                "ID": a.id,
                "Title": a.title,
                "Score": a.score,
                "Year": a.release_year,
                "Author": names[a.author_id],
            })
        logger.info("Report built with %d rows (author=%s, year=%s)", len(out), author_id, release_year)
        return out

    def import_anime_from_file(self, stream, filename: Optional[str], content_type: Optional[str]) -> ImportResult:
        """
        Import anime from an uploaded JSON array.
        Raises InvalidInputError if the upload is rejected up front; per-record
        problems are only counted in the result.
        """
        pipeline = ImportPipeline(self.repo, batch_size=self.import_batch_size)
        return pipeline.run(stream, filename=filename, content_type=content_type)
