# animehub/repo.py
import os
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Dict, List, Optional

from animehub.models import Anime, Author, Page

SCHEMA = """
CREATE TABLE IF NOT EXISTS authors (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS animes (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    score REAL,
    release_year INTEGER NOT NULL,
    author_id TEXT NOT NULL,
    FOREIGN KEY (author_id) REFERENCES authors(id),
    UNIQUE (title, release_year, author_id)
);

CREATE INDEX IF NOT EXISTS idx_animes_author ON animes (author_id);
CREATE INDEX IF NOT EXISTS idx_animes_year ON animes (release_year);
"""

# --- Exceptions ---
class RepoError(Exception):
    pass

class DuplicateKeyError(RepoError):
    """A unique constraint rejected the write."""
    pass

class IntegrityViolation(RepoError):
    """A referential constraint rejected the write."""
    pass


def new_id() -> str:
    return str(uuid.uuid4())


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


def _translate(e: sqlite3.Error) -> RepoError:
    msg = str(e)
    if isinstance(e, sqlite3.IntegrityError):
        if "UNIQUE" in msg:
            return DuplicateKeyError(msg)
        return IntegrityViolation(msg)
    return RepoError(msg)


def _anime(r) -> Anime:
    return Anime(r["id"], r["title"], r["release_year"], r["author_id"], r["score"])


# --- SQLite repo ---
class SqliteRepo:
    def __init__(self, db_path: str):
        self.db_path = db_path
        folder = os.path.dirname(db_path)
        if folder:
            os.makedirs(folder, exist_ok=True)

    @contextmanager
    def conn(self):
        con = sqlite3.connect(self.db_path)
        con.row_factory = sqlite3.Row
        con.create_function("casefold", 1, _casefold)
        try:
            con.execute("PRAGMA foreign_keys = ON")
            yield con
            con.commit()
        except sqlite3.Error as e:
            con.rollback()
            raise _translate(e) from e
        finally:
            con.close()

    def init_schema(self) -> None:
        with self.conn() as c:
            c.executescript(SCHEMA)

    # -- Authors --
    def create_author(self, author: Author) -> Author:
        author.id = new_id()
        with self.conn() as c:
            c.execute("INSERT INTO authors (id, name) VALUES (?, ?)", (author.id, author.name))
        return author

    def get_author(self, author_id: str) -> Optional[Author]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM authors WHERE id = ?", (author_id,)).fetchone()
            return Author(r["id"], r["name"]) if r else None

    def list_authors(self) -> List[Author]:
        with self.conn() as c:
            rows = c.execute("SELECT * FROM authors ORDER BY name").fetchall()
            return [Author(r["id"], r["name"]) for r in rows]

    def update_author(self, author: Author) -> None:
        with self.conn() as c:
            c.execute("UPDATE authors SET name = ? WHERE id = ?", (author.name, author.id))

    def delete_author(self, author_id: str) -> None:
        with self.conn() as c:
            c.execute("DELETE FROM authors WHERE id = ?", (author_id,))

    def author_exists(self, author_id: str) -> bool:
        with self.conn() as c:
            return c.execute("SELECT 1 FROM authors WHERE id = ?", (author_id,)).fetchone() is not None

    def author_name_exists(self, name: str) -> bool:
        with self.conn() as c:
            return c.execute("SELECT 1 FROM authors WHERE name = ?", (name,)).fetchone() is not None

    def find_author_by_name_ci(self, name: str) -> Optional[Author]:
        """Case-insensitive lookup; an exact-case match wins over other spellings."""
        with self.conn() as c:
            r = c.execute(
                "SELECT * FROM authors WHERE casefold(name) = ? ORDER BY (name = ?) DESC, name LIMIT 1",
                (name.casefold(), name)).fetchone()
            return Author(r["id"], r["name"]) if r else None

    # -- Animes --
    def create_anime(self, anime: Anime) -> Anime:
        anime.id = new_id()
        with self.conn() as c:
            c.execute("INSERT INTO animes (id, title, score, release_year, author_id) VALUES (?, ?, ?, ?, ?)",
                      (anime.id, anime.title, anime.score, anime.release_year, anime.author_id))
        return anime

    def create_animes(self, batch: List[Anime]) -> List[Anime]:
        """Insert the whole batch in one transaction; nothing is kept if any row fails."""
        ids = [new_id() for _ in batch]
        with self.conn() as c:
            c.executemany(
                "INSERT INTO animes (id, title, score, release_year, author_id) VALUES (?, ?, ?, ?, ?)",
                [(i, a.title, a.score, a.release_year, a.author_id) for i, a in zip(ids, batch)])
        for i, a in zip(ids, batch):
            a.id = i
        return batch

    def get_anime(self, anime_id: str) -> Optional[Anime]:
        with self.conn() as c:
            r = c.execute("SELECT * FROM animes WHERE id = ?", (anime_id,)).fetchone()
            return _anime(r) if r else None

    def anime_exists(self, anime_id: str) -> bool:
        with self.conn() as c:
            return c.execute("SELECT 1 FROM animes WHERE id = ?", (anime_id,)).fetchone() is not None

    def anime_triple_exists(self, title: str, release_year: int, author_id: str) -> bool:
        with self.conn() as c:
            r = c.execute("SELECT 1 FROM animes WHERE title = ? AND release_year = ? AND author_id = ?",
                          (title, release_year, author_id)).fetchone()
            return r is not None

    def update_anime(self, anime: Anime) -> None:
        with self.conn() as c:
            c.execute("UPDATE animes SET title=?, score=?, release_year=?, author_id=? WHERE id=?",
                      (anime.title, anime.score, anime.release_year, anime.author_id, anime.id))

    def delete_anime(self, anime_id: str) -> None:
        with self.conn() as c:
            c.execute("DELETE FROM animes WHERE id = ?", (anime_id,))

    @staticmethod
    def _where(author_id: Optional[str], release_year: Optional[int]):
        where, params = [], []
        if author_id is not None:
            where.append("author_id = ?"); params.append(author_id)
        if release_year is not None:
            where.append("release_year = ?"); params.append(release_year)
        sql = (" WHERE " + " AND ".join(where)) if where else ""
        return sql, params

    def list_animes(self, author_id: Optional[str] = None, release_year: Optional[int] = None) -> List[Anime]:
        where, params = self._where(author_id, release_year)
        with self.conn() as c:
            rows = c.execute("SELECT * FROM animes" + where + " ORDER BY title, release_year, id",
                             tuple(params)).fetchall()
            return [_anime(r) for r in rows]

    def query_animes(self, author_id: Optional[str] = None, release_year: Optional[int] = None,
                     page: int = 0, size: int = 20) -> Page:
        """
        One page of animes matching the optional author and year filters.
        Pages are zero-based and ordered by title, year, id.
        """
        where, params = self._where(author_id, release_year)
        with self.conn() as c:
            total = c.execute("SELECT COUNT(*) FROM animes" + where, tuple(params)).fetchone()[0]
            rows = c.execute("SELECT * FROM animes" + where + " ORDER BY title, release_year, id LIMIT ? OFFSET ?",
                             tuple(params) + (size, page * size)).fetchall()
            return Page([_anime(r) for r in rows], page, size, total)


# --- In-memory repo (simple, used for unit tests) ---
class InMemoryRepo:
    def __init__(self):
        self._authors: Dict[str, Author] = {}
        self._animes: Dict[str, Anime] = {}

    def _check_anime(self, a: Anime, own_id: Optional[str] = None):
        if a.author_id not in self._authors:
            raise IntegrityViolation("FOREIGN KEY constraint failed")
        for other in self._animes.values():
            if other.id != own_id and other.triple() == a.triple():
                raise DuplicateKeyError("UNIQUE constraint failed: animes.title, animes.release_year, animes.author_id")

    def _check_author(self, au: Author, own_id: Optional[str] = None):
        for other in self._authors.values():
            if other.id != own_id and other.name == au.name:
                raise DuplicateKeyError("UNIQUE constraint failed: authors.name")

    # Authors
    def create_author(self, au: Author) -> Author:
        self._check_author(au)
        au.id = new_id()
        self._authors[au.id] = au
        return au
    def get_author(self, aid: str): return self._authors.get(aid)
    def list_authors(self): return sorted(self._authors.values(), key=lambda x: x.name)
    def update_author(self, au: Author):
        self._check_author(au, au.id)
        self._authors[au.id] = au
    def delete_author(self, aid: str):
        if any(a.author_id == aid for a in self._animes.values()):
            raise IntegrityViolation("FOREIGN KEY constraint failed")
        self._authors.pop(aid, None)
    def author_exists(self, aid: str): return aid in self._authors
    def author_name_exists(self, name: str): return any(a.name == name for a in self._authors.values())

    def find_author_by_name_ci(self, name: str):
        matches = [a for a in self._authors.values() if a.name.casefold() == name.casefold()]
        if not matches:
            return None
        matches.sort(key=lambda a: (a.name != name, a.name))
        return matches[0]

    # Animes
    def create_anime(self, a: Anime) -> Anime:
        self._check_anime(a)
        a.id = new_id()
        self._animes[a.id] = a
        return a

    def create_animes(self, batch: List[Anime]) -> List[Anime]:
        staged: Dict[str, Anime] = {}
        for a in batch:
            self._check_anime(a)
            if any(s.triple() == a.triple() for s in staged.values()):
                raise DuplicateKeyError("UNIQUE constraint failed: animes.title, animes.release_year, animes.author_id")
            staged[new_id()] = a
        for aid, a in staged.items():
            a.id = aid
            self._animes[aid] = a
        return batch

    def get_anime(self, aid: str): return self._animes.get(aid)
    def anime_exists(self, aid: str): return aid in self._animes

    def anime_triple_exists(self, title: str, release_year: int, author_id: str):
        return any(a.triple() == (title, release_year, author_id) for a in self._animes.values())

    def update_anime(self, a: Anime):
        self._check_anime(a, a.id)
        self._animes[a.id] = a
    def delete_anime(self, aid: str): self._animes.pop(aid, None)

    def list_animes(self, author_id: Optional[str] = None, release_year: Optional[int] = None):
        res = list(self._animes.values())
        if author_id is not None:
            res = [r for r in res if r.author_id == author_id]
        if release_year is not None:
            res = [r for r in res if r.release_year == release_year]
        res.sort(key=lambda x: (x.title, x.release_year, x.id))
        return res

    def query_animes(self, author_id=None, release_year=None, page: int = 0, size: int = 20) -> Page:
        res = self.list_animes(author_id=author_id, release_year=release_year)
        start = page * size
        return Page(res[start:start + size], page, size, len(res))
