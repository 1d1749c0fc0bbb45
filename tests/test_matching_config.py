import threading

from core.settings import merge_defaults
from matching.config import MatchingSettings
from matching.workers import WorkerArena


def test_defaults_follow_settings_file() -> None:
    settings = MatchingSettings.from_mapping(merge_defaults({}))
    assert settings == MatchingSettings()
    assert settings.index.table_number == 6
    assert settings.matcher.ransac_max_iters == 2000
    assert settings.sampler.similarity_threshold == 0.98


def test_values_are_coerced_and_clamped() -> None:
    settings = MatchingSettings.from_mapping(
        {
            "sampler": {"interval_s": "2.5", "similarity_threshold": 3},
            "matcher": {"knn_k": "oops", "min_similarity": 0.7},
            "scheduler": {"max_workers": 0},
        }
    )
    assert settings.sampler.interval_s == 2.5
    assert settings.sampler.similarity_threshold == 1.0
    assert settings.matcher.knn_k == 30
    assert settings.matcher.min_similarity == 0.7
    assert settings.max_workers == 1


def test_worker_arena_gives_each_thread_its_own_value() -> None:
    arena = WorkerArena(object)
    seen = []
    lock = threading.Lock()
    barrier = threading.Barrier(4)

    def _work() -> None:
        first, second = arena.get(), arena.get()
        assert first is second
        with lock:
            seen.append(first)
        barrier.wait()

    threads = [threading.Thread(target=_work) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len({id(item) for item in seen}) == 4
    assert len(arena) == 4
