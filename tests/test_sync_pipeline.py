"""End-to-end runs of :class:`SyncRunner` against a temporary cache."""

from pathlib import Path

import numpy as np
import pytest

from cache.mapping import MappingCache
from cache.store import CacheStore
from core.errors import InputError
from core.inputs import hash_file
from matching.backend import ImageVideoMatcher, OpenCVImageVideoMatcher, VideoMatcher, VideoMatcherTask
from matching.config import MatchingSettings
from matching.frame_sampler import VideoDecodeError
from matching.types import Matching, VideoInfo
from slidesync import SyncRunner


class _StubTask(VideoMatcherTask):
    def __init__(self, pages) -> None:
        self._pages = pages

    def process(self):
        first = self._pages[0] if self._pages else None
        return [Matching(0.0, 0, first), Matching.sentinel(VideoInfo(fps=10.0, frame_count=100))]


class _StubVideoMatcher(VideoMatcher):
    def __init__(self, backend, pages) -> None:
        self._backend = backend
        self._pages = pages

    def match_images_with_video(self, video_path, progress):
        self._backend.videos.append(Path(video_path).name)
        if Path(video_path).name in self._backend.broken:
            raise VideoDecodeError(f"could not open video '{video_path}'")
        return _StubTask(self._pages)


class _StubBackend(ImageVideoMatcher):
    def __init__(self) -> None:
        self.videos = []
        self.page_sets = []
        self.broken = set()

    def create_video_matcher(self, pages, progress=None):
        self.page_sets.append(list(pages))
        return _StubVideoMatcher(self, list(pages))


@pytest.fixture
def store(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / "cache.db")


@pytest.fixture
def write_video_stub(tmp_path):
    def _write(name: str, payload: bytes) -> Path:
        path = tmp_path / "inputs" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)
        return path

    return _write


def _runner(store, fake_rasterizer, tmp_path, backend) -> SyncRunner:
    return SyncRunner(store, fake_rasterizer, tmp_path / "pages", backend=backend, extract_workers=2)


def test_cached_video_is_skipped(tmp_path, store, fake_rasterizer, write_pdf, write_video_stub, slide_factory) -> None:
    fake_rasterizer.documents["deck.pdf"] = [slide_factory(1)]
    inputs = [write_pdf("deck.pdf", b"deck"), write_video_stub("talk.mp4", b"talk")]
    backend = _StubBackend()
    runner = _runner(store, fake_rasterizer, tmp_path, backend)

    first = runner.run(inputs)
    second = runner.run(inputs)

    assert first.ok and len(first.processed_videos) == 1
    assert second.processed_videos == []
    assert second.cached_videos == first.processed_videos
    assert backend.videos == ["talk.mp4"]
    assert len(fake_rasterizer.calls) == 1


def test_new_document_asks_before_reprocessing(
    tmp_path, store, fake_rasterizer, write_pdf, write_video_stub, slide_factory
) -> None:
    fake_rasterizer.documents["deck.pdf"] = [slide_factory(1)]
    fake_rasterizer.documents["extra.pdf"] = [slide_factory(2)]
    deck = write_pdf("deck.pdf", b"deck")
    talk = write_video_stub("talk.mp4", b"talk")
    extra = write_pdf("extra.pdf", b"extra")
    backend = _StubBackend()
    runner = _runner(store, fake_rasterizer, tmp_path, backend)
    runner.run([deck, talk])

    asked = []
    declined = runner.run([deck, extra, talk], confirm=lambda video, decision: asked.append(decision) or False)
    assert declined.processed_videos == []
    assert asked[0].reason == "1 new document(s) requested"

    accepted = runner.run([deck, extra, talk], confirm=lambda video, decision: True)
    assert len(accepted.processed_videos) == 1
    info = MappingCache(store).find(accepted.processed_videos[0])
    assert info.finished and len(info.pdf_hashes) == 2

    # A subset of the cached documents needs no recomputation.
    subset = runner.run([extra, talk], confirm=lambda video, decision: pytest.fail("should not ask"))
    assert subset.processed_videos == []


def test_invalidate_recomputes_without_asking(
    tmp_path, store, fake_rasterizer, write_pdf, write_video_stub, slide_factory
) -> None:
    fake_rasterizer.documents["deck.pdf"] = [slide_factory(1)]
    inputs = [write_pdf("deck.pdf", b"deck"), write_video_stub("talk.mp4", b"talk")]
    backend = _StubBackend()
    runner = _runner(store, fake_rasterizer, tmp_path, backend)
    runner.run(inputs)

    summary = runner.run(inputs, invalidate_video_cache=True, confirm=lambda *_: pytest.fail("should not ask"))

    assert len(summary.processed_videos) == 1
    assert backend.videos == ["talk.mp4", "talk.mp4"]


def test_invalid_input_aborts_before_any_work(tmp_path, store, fake_rasterizer, write_pdf) -> None:
    backend = _StubBackend()
    runner = _runner(store, fake_rasterizer, tmp_path, backend)
    with pytest.raises(InputError):
        runner.run([write_pdf("deck.pdf", b"deck"), tmp_path])
    assert fake_rasterizer.calls == []
    assert backend.page_sets == []


def test_failures_are_isolated(tmp_path, store, fake_rasterizer, write_pdf, write_video_stub, slide_factory) -> None:
    fake_rasterizer.documents["good.pdf"] = [slide_factory(1)]
    fake_rasterizer.documents["bad.pdf"] = [slide_factory(2)]
    fake_rasterizer.fail.add("bad.pdf")
    backend = _StubBackend()
    backend.broken.add("broken.mp4")
    runner = _runner(store, fake_rasterizer, tmp_path, backend)

    broken = write_video_stub("broken.mp4", b"broken")
    summary = runner.run(
        [
            write_pdf("good.pdf", b"good"),
            write_pdf("bad.pdf", b"bad"),
            write_video_stub("talk.mp4", b"talk"),
            broken,
        ]
    )

    assert len(summary.documents) == 1
    assert len(summary.processed_videos) == 1
    assert len(summary.failures) == 2
    assert all(page.document_hash == summary.documents[0] for page in backend.page_sets[0])
    mappings = MappingCache(store)
    info = mappings.find(summary.processed_videos[0])
    assert info.finished and info.pdf_hashes == tuple(summary.documents)
    assert hash_file(broken) in summary.failures
    assert mappings.find(hash_file(broken)).finished is False


def test_screen_recording_is_aligned_with_its_slides(
    tmp_path, store, fake_rasterizer, write_pdf, scenario_video, slide_factory
) -> None:
    first, second = slide_factory(21), slide_factory(22)
    fake_rasterizer.documents["deck.pdf"] = [first, second]
    deck = write_pdf("deck.pdf", b"deck")
    video = scenario_video([first, second, first])
    backend = OpenCVImageVideoMatcher(MatchingSettings(max_workers=2))
    runner = _runner(store, fake_rasterizer, tmp_path, backend)

    summary = runner.run([deck, video])

    assert summary.ok
    (document_hash,) = summary.documents
    rows = MappingCache(store).pdf_matchings(document_hash)
    assert [(row.video_offset_ms, row.page_idx, row.duration_ms) for row in rows] == [
        (0, 0, 10000),
        (10000, 1, 10000),
        (20000, 0, 10000),
    ]


def test_title_only_deck_does_not_abort_the_run(tmp_path, store, fake_rasterizer, write_pdf, scenario_video) -> None:
    title = np.full((480, 640, 3), 255, np.uint8)
    title[190:290, 270:370] = 0
    fake_rasterizer.documents["title.pdf"] = [title]
    runner = _runner(store, fake_rasterizer, tmp_path, OpenCVImageVideoMatcher(MatchingSettings(max_workers=2)))

    summary = runner.run([write_pdf("title.pdf", b"title"), scenario_video([title], name="intro.avi")])

    assert summary.ok
    (video_hash,) = summary.processed_videos
    assert MappingCache(store).find(video_hash).finished


def _persisted_rows(store: CacheStore):
    with store.reader() as conn:
        extracted = conn.execute(
            "SELECT pdf_hash, dir, finished FROM pdf_extracted_pages_dirs ORDER BY pdf_hash"
        ).fetchall()
        mapping = conn.execute(
            """
            SELECT videos.video_hash, videos_mapping.video_ms, videos_mapping.pdf_hash, videos_mapping.page
            FROM videos_mapping INNER JOIN videos ON videos.id = videos_mapping.video_id
            ORDER BY videos.video_hash, videos_mapping.video_ms
            """
        ).fetchall()
    return extracted, mapping


def test_repeated_runs_persist_identical_rows(
    tmp_path, store, fake_rasterizer, write_pdf, scenario_video, slide_factory
) -> None:
    first, second = slide_factory(31), slide_factory(32)
    fake_rasterizer.documents["deck.pdf"] = [first, second]
    inputs = [write_pdf("deck.pdf", b"deck"), scenario_video([first, second, first])]
    runner = _runner(store, fake_rasterizer, tmp_path, OpenCVImageVideoMatcher(MatchingSettings(max_workers=2)))

    runner.run(inputs)
    before = _persisted_rows(store)
    summary = runner.run(inputs, invalidate_video_cache=True)
    after = _persisted_rows(store)

    assert len(summary.processed_videos) == 1
    assert after == before
    extracted, mapping = after
    assert [row[2] for row in extracted] == [1]
    assert [(row[1], row[3]) for row in mapping] == [(0, 0), (10000, 1), (20000, 0), (30000, None)]
