import io
import json
import pytest
from unittest.mock import patch

from animehub.repo import InMemoryRepo, DuplicateKeyError, RepoError
from animehub.service import AnimeService, InvalidInputError
from animehub.importer import (ImportPipeline, JsonArrayStream, AuthorResolver, DuplicateDetector,
                               BATCH_SIZE, DONE)
from animehub.models import Author

NARUTO_BLEACH = (b'[{"title":"Naruto","author":"Test Author","score":9.5,"year":2002},'
                 b'{"title":"Bleach","author":"Test Author","score":8.5,"year":2004}]')

# ---------- Fixtures / helpers ----------
@pytest.fixture
def repo():
    return InMemoryRepo()

@pytest.fixture
def svc(repo):
    return AnimeService(repo)

@pytest.fixture
def author(svc):
    return svc.create_author("Test Author")

def upload(svc, data, filename="anime.json", content_type="application/json"):
    if not isinstance(data, bytes):
        data = json.dumps(data).encode("utf-8")
    return svc.import_anime_from_file(io.BytesIO(data), filename, content_type)

def counts(result):
    return result.successful, result.failed

def record(title="Naruto", author="Test Author", year=2002, score=9.5):
    return {"title": title, "author": author, "score": score, "year": year}

# ---------- Examples ----------
def test_import_two_records(svc, author, repo):
    res = upload(svc, NARUTO_BLEACH)
    assert counts(res) == (2, 0)
    assert res.to_dict() == {"successfulImportCount": 2, "failedImportCount": 0}
    assert sorted(a.title for a in repo.list_animes()) == ["Bleach", "Naruto"]

def test_import_unknown_author(svc, repo):
    res = upload(svc, NARUTO_BLEACH)
    assert counts(res) == (0, 2)
    assert repo.list_animes() == []

def test_import_missing_title_and_author(svc, author):
    data = [{"author": "Test Author", "score": 9.5, "year": 2002},
            {"title": "Bleach", "score": 8.5, "year": 2004}]
    assert counts(upload(svc, data)) == (0, 2)

def test_import_empty_array(svc):
    assert counts(upload(svc, b"  [ ]  ")) == (0, 0)

# ---------- Per-record failures ----------
def test_failure_does_not_stop_later_records(svc, author):
    data = [record(author="Nobody"), record(title="Bleach", year=2004)]
    assert counts(upload(svc, data)) == (1, 1)

@pytest.mark.parametrize("bad", [
    {"author": "Test Author", "year": 2002},
    {"title": "  ", "author": "Test Author", "year": 2002},
    {"title": "X", "author": "", "year": 2002},
    {"title": "X", "author": "Test Author"},
    {"title": "X", "author": "Test Author", "year": "2002"},
    {"title": "X", "author": "Test Author", "year": 2002.5},
    {"title": 5, "author": "Test Author", "year": 2002},
    {"title": "X", "author": "Test Author", "year": 2002, "score": "high"},
    {"title": "X", "author": "Test Author", "year": 1800},
    {"title": "X", "author": "Test Author", "year": 2002, "score": 11},
    ["not", "an", "object"],
    42,
    None,
])
def test_invalid_record_counts_as_failure(svc, author, bad):
    res = upload(svc, [bad, record()])
    assert counts(res) == (1, 1)

def test_malformed_element_is_skipped(svc, author):
    data = (b'[{"title": "Broken", "author": }, '
            b'{"title":"Naruto","author":"Test Author","year":2002}]')
    assert counts(upload(svc, data)) == (1, 1)

def test_unknown_keys_are_ignored(svc, author):
    data = [dict(record(), studio="Pierrot", tags=["ninja", "[x]"])]
    assert counts(upload(svc, data)) == (1, 0)

def test_score_is_optional(svc, author, repo):
    data = [{"title": "Naruto", "author": "Test Author", "year": 2002}]
    assert counts(upload(svc, data)) == (1, 0)
    assert repo.list_animes()[0].score is None

def test_author_match_is_case_insensitive(svc, author, repo):
    res = upload(svc, [record(author="TEST AUTHOR"), record(title="Bleach", author="test author")])
    assert counts(res) == (2, 0)
    assert all(a.author_id == author.id for a in repo.list_animes())

def test_duplicate_of_existing_anime(svc, author):
    svc.create_anime("Naruto", 2002, 9.5, author.id)
    assert counts(upload(svc, [record()])) == (0, 1)

def test_same_record_twice_in_one_file(svc, author, repo):
    res = upload(svc, [record(), record(score=1.0)])
    assert counts(res) == (1, 1)
    assert len(repo.list_animes()) == 1
    assert repo.list_animes()[0].score == 9.5

def test_import_does_not_notify(repo, author):
    from animehub.notifier import InMemoryNotifier
    notifier = InMemoryNotifier()
    svc = AnimeService(repo, notifier=notifier)
    upload(svc, NARUTO_BLEACH)
    assert notifier.sent == []

# ---------- Rejected uploads ----------
@pytest.mark.parametrize("data, filename, content_type, message", [
    (b"", "anime.json", "application/json", "File is empty"),
    (NARUTO_BLEACH, "anime.json", "text/plain", "content type"),
    (NARUTO_BLEACH, "anime.json", None, "content type"),
    (NARUTO_BLEACH, "anime.txt", "application/json", "extension"),
    (b'{"title":"Naruto"}', "anime.json", "application/json", "must be an array"),
    (b'"just a string"', "anime.json", "application/json", "must be an array"),
    (b"   ", "anime.json", "application/json", "must be an array"),
])
def test_rejected_upload(svc, author, repo, data, filename, content_type, message):
    with pytest.raises(InvalidInputError, match=message):
        svc.import_anime_from_file(io.BytesIO(data), filename, content_type)
    assert repo.list_animes() == []

def test_filename_is_optional_and_case_insensitive(svc, author):
    assert counts(upload(svc, NARUTO_BLEACH, filename=None)) == (2, 0)

def test_uppercase_extension_is_accepted(svc, author):
    assert counts(upload(svc, NARUTO_BLEACH, filename="ANIME.JSON")) == (2, 0)

@pytest.mark.parametrize("content_type", ["APPLICATION/JSON", "application/json; charset=utf-8",
                                          "application/json;charset=latin-1"])
def test_content_type_must_match_exactly(svc, author, repo, content_type):
    with pytest.raises(InvalidInputError, match="content type"):
        upload(svc, NARUTO_BLEACH, content_type=content_type)
    assert repo.list_animes() == []

def test_invalid_utf8_record_fails_and_import_continues(svc, author, repo):
    data = (b'[{"title":"Nar\xff\xfeuto","author":"Test Author","year":2002},'
            b'{"title":"Bleach","author":"Test Author","year":2004}]')
    assert counts(upload(svc, data)) == (1, 1)
    assert [a.title for a in repo.list_animes()] == ["Bleach"]

# ---------- Batching ----------
def many(n):
    return [record(title=f"Title {i}", year=1950 + i % 100) for i in range(n)]

def test_batches_are_flushed_at_threshold(repo, author):
    pipeline = ImportPipeline(repo, batch_size=3)
    with patch.object(repo, "create_animes", wraps=repo.create_animes) as spy:
        res = pipeline.run(io.BytesIO(json.dumps(many(7)).encode()), "a.json", "application/json")
    assert counts(res) == (7, 0)
    assert [len(c.args[0]) for c in spy.call_args_list] == [3, 3, 1]

def test_default_batch_size(repo, author):
    assert BATCH_SIZE == 200
    pipeline = ImportPipeline(repo)
    with patch.object(repo, "create_animes", wraps=repo.create_animes) as spy:
        res = pipeline.run(io.BytesIO(json.dumps(many(450)).encode()), "a.json", "application/json")
    assert counts(res) == (450, 0)
    assert [len(c.args[0]) for c in spy.call_args_list] == [200, 200, 50]

def test_failed_batch_counts_as_failures(repo, author):
    pipeline = ImportPipeline(repo, batch_size=2)
    real = repo.create_animes
    calls = []

    def flaky(batch):
        calls.append(len(batch))
        if len(calls) == 1:
            raise DuplicateKeyError("UNIQUE constraint failed")
        return real(batch)

    with patch.object(repo, "create_animes", side_effect=flaky):
        res = pipeline.run(io.BytesIO(json.dumps(many(5)).encode()), "a.json", "application/json")
    assert counts(res) == (3, 2)
    assert res.successful + res.failed == 5
    assert len(repo.list_animes()) == 3

def test_store_error_on_final_flush(repo, author):
    pipeline = ImportPipeline(repo)
    with patch.object(repo, "create_animes", side_effect=RepoError("disk I/O error")):
        res = pipeline.run(io.BytesIO(NARUTO_BLEACH), "a.json", "application/json")
    assert counts(res) == (0, 2)

def test_small_read_chunks(repo, author):
    pipeline = ImportPipeline(repo, chunk_size=5)
    res = pipeline.run(io.BytesIO(json.dumps(many(20)).encode()), "a.json", "application/json")
    assert counts(res) == (20, 0)

# ---------- Author resolver / duplicate detector ----------
def test_author_resolver_caches_hits_under_input_spelling(repo, author):
    resolver = AuthorResolver(repo)
    with patch.object(repo, "find_author_by_name_ci", wraps=repo.find_author_by_name_ci) as spy:
        assert resolver.resolve("Test Author").id == author.id
        assert resolver.resolve("Test Author").id == author.id
        assert spy.call_count == 1
        assert resolver.resolve("TEST AUTHOR").id == author.id
        assert spy.call_count == 2

def test_author_resolver_does_not_cache_misses(repo):
    resolver = AuthorResolver(repo)
    with patch.object(repo, "find_author_by_name_ci", wraps=repo.find_author_by_name_ci) as spy:
        assert resolver.resolve("Ghost") is None
        assert resolver.resolve("Ghost") is None
        assert spy.call_count == 2

def test_author_cache_is_per_import(svc, repo, author):
    with patch.object(repo, "find_author_by_name_ci", wraps=repo.find_author_by_name_ci) as spy:
        upload(svc, NARUTO_BLEACH)
        upload(svc, [record(title="One Piece", year=1999)])
    assert spy.call_count == 2

def test_duplicate_detector(repo, svc, author):
    svc.create_anime("Naruto", 2002, None, author.id)
    detector = DuplicateDetector(repo)
    assert detector.exists("Naruto", 2002, author)
    assert detector.exists("Naruto", 2002, author.id)
    assert not detector.exists("Naruto", 2003, author)
    assert not detector.exists("naruto", 2002, author)

# ---------- JsonArrayStream ----------
def elements(data: bytes, chunk_size=4):
    return list(JsonArrayStream(io.BytesIO(data), chunk_size=chunk_size))

def test_stream_handles_brackets_and_commas_inside_strings():
    data = '[{"t": "a,b]c}"}, {"t": "q\\"],"}, [1, [2]], "s"]'.encode()
    got = elements(data)
    assert [e.value for e in got] == [{"t": "a,b]c}"}, {"t": 'q"],'}, [1, [2]], "s"]

def test_stream_multibyte_characters_across_chunks():
    data = json.dumps([{"title": "進撃の巨人"}, {"title": "Ωmega"}], ensure_ascii=False).encode("utf-8")
    got = elements(data, chunk_size=1)
    assert [e.value["title"] for e in got] == ["進撃の巨人", "Ωmega"]

def test_stream_tolerates_bom():
    got = elements(b'\xef\xbb\xbf[{"a": 1}]')
    assert [e.value for e in got] == [{"a": 1}]

def test_stream_flags_invalid_utf8_element():
    got = elements(b'[{"a": "\xc3\x28"}, {"a": 2}]')
    assert [e.ok for e in got] == [False, True]
    assert "UTF-8" in str(got[0].error)

def test_stream_reports_malformed_then_continues():
    got = elements(b'[{"a": 1}, {"a": }, {"a": 3}, nope]')
    assert [e.ok for e in got] == [True, False, True, False]
    assert got[2].value == {"a": 3}
    assert [e.index for e in got] == [0, 1, 2, 3]

def test_stream_trailing_comma_is_an_empty_element():
    got = elements(b'[{"a": 1},]')
    assert [e.ok for e in got] == [True, False]

def test_stream_unterminated_array():
    got = elements(b'[{"a": 1}, {"a": 2')
    assert [e.ok for e in got] == [True, False]

def test_stream_ignores_text_after_array():
    reader = JsonArrayStream(io.BytesIO(b'[1, 2] trailing'))
    assert [e.value for e in reader] == [1, 2]
    assert reader.state == DONE

def test_stream_rejects_non_array():
    with pytest.raises(InvalidInputError):
        JsonArrayStream(io.BytesIO(b'{"a": [1]}')).open()

def test_stream_reads_lazily():
    class CountingStream(io.BytesIO):
        reads = 0

        def read(self, n=-1):
            CountingStream.reads += 1
            return super().read(n)

    body = json.dumps([{"i": i} for i in range(1000)]).encode()
    reader = iter(JsonArrayStream(CountingStream(body), chunk_size=64))
    first = next(reader)
    assert first.value == {"i": 0}
    assert CountingStream.reads < 5

def test_resolver_cache_holds_author_objects(repo):
    au = repo.create_author(Author(None, "Solo"))
    resolver = AuthorResolver(repo)
    assert resolver.resolve("solo") is au
