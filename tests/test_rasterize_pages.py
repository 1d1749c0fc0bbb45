import pytest

from cache.extraction import ExtractionCache, ExtractionRecord
from cache.store import CacheStore
from core.inputs import hash_files
from core.progress import ProgressReporter
from rasterize.pages import PageExtractor, allocate_pages_dir
from rasterize.pdftocairo import PopplerRasterizer, RasterizerError, list_page_images, parse_pdf_info


@pytest.fixture
def extraction_cache(tmp_path) -> ExtractionCache:
    return ExtractionCache(CacheStore(tmp_path / "cache.db"))


@pytest.fixture
def extractor(tmp_path, extraction_cache, fake_rasterizer) -> PageExtractor:
    return PageExtractor(extraction_cache, fake_rasterizer, tmp_path / "pages", max_workers=2)


def test_parse_pdf_info() -> None:
    text = "Title:          Lecture 3\nPages:          12\nPage size:      720 x 540 pts\n\n"
    info = parse_pdf_info(text)
    assert info["Pages"] == "12"
    assert info["Page size"] == "720 x 540 pts"


def test_page_images_are_listed_in_natural_order(tmp_path) -> None:
    for name in ("p-10.png", "p-2.png", "p-1.png", "notes.txt"):
        (tmp_path / name).write_bytes(b"")
    assert [path.name for path in list_page_images(tmp_path)] == ["p-1.png", "p-2.png", "p-10.png"]


def test_allocated_directories_are_unique(tmp_path) -> None:
    first = allocate_pages_dir(tmp_path, "a" * 64)
    second = allocate_pages_dir(tmp_path, "a" * 64)
    assert first != second
    assert first.parent == tmp_path
    assert first.name.startswith("slides-")


def test_poppler_rasterizer_requires_empty_target(tmp_path) -> None:
    target = tmp_path / "out"
    target.mkdir()
    (target / "leftover.png").write_bytes(b"")
    with pytest.raises(RasterizerError, match="must be empty"):
        PopplerRasterizer().rasterize(tmp_path / "deck.pdf", target)


def test_first_extraction_records_finished_directory(
    extractor, extraction_cache, fake_rasterizer, write_pdf, slide_factory
) -> None:
    fake_rasterizer.documents["deck.pdf"] = [slide_factory(1), slide_factory(2)]
    (document,) = hash_files([write_pdf("deck.pdf", b"deck")])
    events = []

    result = extractor.extract([document], ProgressReporter(lambda *args: events.append(args)))

    (pages,) = result.documents
    assert not pages.reused
    assert [page.page_number for page in pages.pages] == [1, 2]
    assert all(page.document_hash == document.hash for page in pages.pages)
    record = extraction_cache.lookup(document.hash)
    assert record == ExtractionRecord(document.hash, pages.directory, True)
    assert events[-1] == (2, 2, "PDF extraction finished.")


def test_finished_extraction_is_reused(extractor, fake_rasterizer, write_pdf, slide_factory) -> None:
    fake_rasterizer.documents["deck.pdf"] = [slide_factory(1)]
    (document,) = hash_files([write_pdf("deck.pdf", b"deck")])

    first = extractor.extract([document])
    second = extractor.extract([document])

    assert len(fake_rasterizer.calls) == 1
    assert second.documents[0].reused
    assert second.documents[0].directory == first.documents[0].directory


def test_pending_extraction_is_redone_in_new_directory(
    tmp_path, extractor, extraction_cache, fake_rasterizer, write_pdf, slide_factory
) -> None:
    fake_rasterizer.documents["deck.pdf"] = [slide_factory(1)]
    (document,) = hash_files([write_pdf("deck.pdf", b"deck")])
    stale = tmp_path / "pages" / "slides-interrupted"
    stale.mkdir(parents=True)
    (stale / "p-1.png").write_bytes(b"partial")
    extraction_cache.upsert(ExtractionRecord(document.hash, stale, False))

    result = extractor.extract([document])

    assert result.documents[0].directory != stale
    assert len(fake_rasterizer.calls) == 1
    assert extraction_cache.lookup(document.hash).finished


def test_failed_document_does_not_stop_the_others(
    extractor, extraction_cache, fake_rasterizer, write_pdf, slide_factory
) -> None:
    fake_rasterizer.documents["good.pdf"] = [slide_factory(1)]
    fake_rasterizer.documents["bad.pdf"] = [slide_factory(2)]
    fake_rasterizer.fail.add("bad.pdf")
    good, bad = hash_files([write_pdf("good.pdf", b"good"), write_pdf("bad.pdf", b"bad")])

    result = extractor.extract([good, bad])

    assert result.document_hashes == [good.hash]
    assert list(result.failures) == [bad.hash]
    assert not extraction_cache.lookup(bad.hash).finished


def test_duplicate_documents_are_extracted_once(extractor, fake_rasterizer, write_pdf, slide_factory) -> None:
    fake_rasterizer.documents["a.pdf"] = [slide_factory(1)]
    fake_rasterizer.documents["copy.pdf"] = [slide_factory(1)]
    documents = hash_files([write_pdf("a.pdf", b"same"), write_pdf("copy.pdf", b"same")])

    result = extractor.extract(documents)

    assert len(result.documents) == 1
    assert len(fake_rasterizer.calls) == 1
    assert len(result.pages) == 1


def test_empty_output_is_a_failure(extractor, fake_rasterizer, write_pdf) -> None:
    fake_rasterizer.documents["empty.pdf"] = []
    (document,) = hash_files([write_pdf("empty.pdf", b"empty")])

    result = extractor.extract([document])

    assert result.documents == []
    assert "no pages" in result.failures[document.hash]
