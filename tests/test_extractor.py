"""Tests for embeddings and the single-flight model handle."""

import threading
import time

import numpy as np
import pytest

from product_lens.errors import ModelUnavailable
from product_lens.extractor import ModelHandle, ModelState, make_embedding


class TestMakeEmbedding:
    """Tests for embedding construction."""

    def test_flat_float32(self):
        emb = make_embedding([[1, 2], [3, 4]])
        assert emb.shape == (4,)
        assert emb.dtype == np.float32

    def test_read_only(self):
        emb = make_embedding([1.0, 2.0])
        with pytest.raises(ValueError):
            emb[0] = 5.0

    def test_copies_source(self):
        source = np.array([1.0, 2.0], dtype=np.float32)
        emb = make_embedding(source)
        source[0] = 9.0
        assert emb[0] == 1.0


class TestModelHandle:
    """Tests for lazy, single-flight model loading."""

    def test_starts_unchecked_and_loads_lazily(self):
        calls = []
        handle = ModelHandle(lambda: calls.append(1) or "model")
        assert handle.state == ModelState.UNCHECKED
        assert calls == []

        assert handle.get() == "model"
        assert handle.state == ModelState.READY

    def test_loads_once(self):
        calls = []

        def loader():
            calls.append(1)
            return object()

        handle = ModelHandle(loader)
        first = handle.get()
        second = handle.get()
        assert first is second
        assert len(calls) == 1

    def test_concurrent_callers_share_one_load(self):
        calls = []
        started = threading.Event()

        def slow_loader():
            calls.append(1)
            started.set()
            time.sleep(0.2)
            return object()

        handle = ModelHandle(slow_loader)
        results = []

        def worker():
            results.append(handle.get())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        threads[0].start()
        started.wait(timeout=5)
        assert handle.state == ModelState.LOADING
        for t in threads[1:]:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(calls) == 1
        assert len(results) == 8
        assert all(r is results[0] for r in results)

    def test_failure_is_final(self):
        calls = []

        def broken():
            calls.append(1)
            raise OSError("weights download failed")

        handle = ModelHandle(broken, name="backbone")
        with pytest.raises(ModelUnavailable, match="weights download failed"):
            handle.get()
        assert handle.state == ModelState.UNAVAILABLE

        with pytest.raises(ModelUnavailable):
            handle.get()
        assert len(calls) == 1
        assert "backbone" in handle.error

    def test_waiters_see_failure(self):
        started = threading.Event()

        def slow_broken():
            started.set()
            time.sleep(0.2)
            raise RuntimeError("no runtime")

        handle = ModelHandle(slow_broken)
        errors = []

        def worker():
            try:
                handle.get()
            except ModelUnavailable as e:
                errors.append(e)

        first = threading.Thread(target=worker)
        first.start()
        started.wait(timeout=5)
        others = [threading.Thread(target=worker) for _ in range(3)]
        for t in others:
            t.start()
        for t in [first] + others:
            t.join(timeout=5)

        assert len(errors) == 4

    def test_interrupted_load_can_be_retried(self):
        attempts = []

        def loader():
            attempts.append(1)
            if len(attempts) == 1:
                raise KeyboardInterrupt
            return "model"

        handle = ModelHandle(loader)
        with pytest.raises(KeyboardInterrupt):
            handle.get()
        assert handle.state == ModelState.UNCHECKED

        assert handle.get() == "model"
        assert handle.state == ModelState.READY
        assert len(attempts) == 2

    def test_waiter_takes_over_after_interrupt(self):
        started = threading.Event()
        attempts = []

        def loader():
            attempts.append(1)
            if len(attempts) == 1:
                started.set()
                time.sleep(0.2)
                raise SystemExit(1)
            return "model"

        handle = ModelHandle(loader)
        results = []

        def first():
            try:
                handle.get()
            except SystemExit:
                results.append("interrupted")

        def waiter():
            results.append(handle.get())

        t1 = threading.Thread(target=first)
        t1.start()
        started.wait(timeout=5)
        t2 = threading.Thread(target=waiter)
        t2.start()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert not t2.is_alive()
        assert sorted(results) == ["interrupted", "model"]

    def test_is_loadable(self):
        assert ModelHandle(lambda: "ok").is_loadable() is True

        def broken():
            raise ImportError("torch missing")

        assert ModelHandle(broken).is_loadable() is False
