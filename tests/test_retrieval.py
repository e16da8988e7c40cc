"""Tests for reading and deleting pastes."""

import secrets
import threading
from datetime import UTC, timedelta

import pytest

from zkpaste.errors import DeletionForbidden, PasteNotFound
from zkpaste.services.paste_store import PasteStore
from zkpaste.services.retrieval import PasteView, RetrievalCoordinator
from tests.conftest import TEST_PEPPER
from tests.test_utils import utcnow


@pytest.fixture
def retrieval(store):
    return RetrievalCoordinator(store)


def create_paste(store, paste_id="p1", token="token-1", **overrides):
    fields = {
        "ciphertext": secrets.token_bytes(48),
        "iv": secrets.token_bytes(12),
        "expire_at": utcnow() + timedelta(hours=1),
        "view_limit": None,
        "single_view": False,
    }
    fields.update(overrides)
    store.create(paste_id=paste_id, raw_deletion_token=token, **fields)
    return fields


def race_reads(retrieval, paste_id, workers):
    barrier = threading.Barrier(workers)
    views = []
    misses = []
    lock = threading.Lock()

    def reader():
        barrier.wait()
        try:
            view = retrieval.view(paste_id)
        except PasteNotFound:
            with lock:
                misses.append(paste_id)
        else:
            with lock:
                views.append(view)

    threads = [threading.Thread(target=reader) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return views, misses


class TestView:
    def test_round_trip_is_byte_identical(self, store, retrieval):
        fields = create_paste(store, mime="application/octet-stream")

        view = retrieval.view("p1")

        assert view.ciphertext == fields["ciphertext"]
        assert view.iv == fields["iv"]
        assert view.mime == "application/octet-stream"
        assert view.single_view is False

    def test_two_view_scenario(self, store, retrieval):
        create_paste(store, token="T", view_limit=2)

        assert retrieval.view("p1").views_remaining == 1
        assert retrieval.view("p1").views_remaining == 0
        with pytest.raises(PasteNotFound):
            retrieval.view("p1")

        # Already gone: the real token now behaves like any other
        with pytest.raises(DeletionForbidden):
            retrieval.delete("p1", "T")
        with pytest.raises(DeletionForbidden):
            retrieval.delete("p1", "wrong")

    @pytest.mark.parametrize("limit", [1, 3, 5])
    def test_exactly_k_views(self, store, retrieval, limit):
        create_paste(store, view_limit=limit)

        remaining = [retrieval.view("p1").views_remaining for _ in range(limit)]

        assert remaining == list(range(limit - 1, -1, -1))
        with pytest.raises(PasteNotFound):
            retrieval.view("p1")

    def test_last_view_deletes_row(self, store, retrieval):
        create_paste(store, view_limit=2)
        retrieval.view("p1")
        retrieval.view("p1")

        assert store.delete("p1") is False

    def test_unlimited_views(self, store, retrieval):
        create_paste(store)
        for _ in range(10):
            assert retrieval.view("p1").views_remaining is None
        assert store.fetch_if_available("p1").views_used == 10

    def test_single_view(self, store, retrieval):
        create_paste(store, single_view=True)

        view = retrieval.view("p1")
        assert view.single_view is True
        assert view.views_remaining is None
        with pytest.raises(PasteNotFound):
            retrieval.view("p1")

    def test_single_view_overrides_limit(self, store, retrieval):
        create_paste(store, single_view=True, view_limit=5)

        assert retrieval.view("p1").views_remaining == 0
        with pytest.raises(PasteNotFound):
            retrieval.view("p1")

    def test_expired_paste_never_returned(self, store, retrieval):
        create_paste(store, expire_at=utcnow() - timedelta(seconds=1))
        with pytest.raises(PasteNotFound):
            retrieval.view("p1")

    def test_expiry_reported_as_epoch_seconds(self, session_factory):
        now = utcnow().replace(microsecond=0)
        store = PasteStore(session_factory, pepper=TEST_PEPPER, clock=lambda: now)
        retrieval = RetrievalCoordinator(store)
        create_paste(store, expire_at=now + timedelta(seconds=90))

        view = retrieval.view("p1")

        expected = (now + timedelta(seconds=90)).replace(tzinfo=UTC).timestamp()
        assert view.expire_at == int(expected)

    def test_unknown_id(self, retrieval):
        with pytest.raises(PasteNotFound):
            retrieval.view("nope")


class TestConcurrentViews:
    def test_single_view_is_seen_once(self, file_session_factory):
        store = PasteStore(file_session_factory, pepper=TEST_PEPPER, timeout_seconds=10)
        retrieval = RetrievalCoordinator(store)
        fields = create_paste(store, single_view=True)

        views, misses = race_reads(retrieval, "p1", workers=12)

        assert len(views) == 1
        assert len(misses) == 11
        assert views[0].ciphertext == fields["ciphertext"]

    def test_view_limit_is_never_exceeded(self, file_session_factory):
        store = PasteStore(file_session_factory, pepper=TEST_PEPPER, timeout_seconds=10)
        retrieval = RetrievalCoordinator(store)
        create_paste(store, view_limit=3)

        views, misses = race_reads(retrieval, "p1", workers=10)

        assert len(views) == 3
        assert len(misses) == 7
        assert sorted(v.views_remaining for v in views) == [0, 1, 2]

    def test_different_pastes_do_not_interfere(self, file_session_factory):
        store = PasteStore(file_session_factory, pepper=TEST_PEPPER, timeout_seconds=10)
        retrieval = RetrievalCoordinator(store)
        create_paste(store, paste_id="a", view_limit=1)
        create_paste(store, paste_id="b", view_limit=1)

        a_views, _ = race_reads(retrieval, "a", workers=4)
        b_views, _ = race_reads(retrieval, "b", workers=4)

        assert len(a_views) == 1
        assert len(b_views) == 1

    @pytest.mark.parametrize("round_", range(5))
    def test_views_racing_token_delete(self, file_session_factory, round_):
        store = PasteStore(file_session_factory, pepper=TEST_PEPPER, timeout_seconds=10)
        retrieval = RetrievalCoordinator(store)
        create_paste(store, token="T", view_limit=2)
        barrier = threading.Barrier(4)
        outcomes = []
        lock = threading.Lock()

        def run(action):
            barrier.wait()
            try:
                result = action()
            except (PasteNotFound, DeletionForbidden) as e:
                result = e
            except Exception as e:
                result = ("unexpected", e)
            with lock:
                outcomes.append(result)

        actions = [lambda: retrieval.view("p1")] * 3 + [lambda: retrieval.delete("p1", "T")]
        threads = [threading.Thread(target=run, args=(action,)) for action in actions]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not [o for o in outcomes if isinstance(o, tuple)]
        assert sum(isinstance(o, PasteView) for o in outcomes) <= 2
        assert store.fetch_if_available("p1") is None
        assert store.delete("p1") is False


class TestDelete:
    def test_matching_token_deletes(self, store, retrieval):
        create_paste(store, token="right")

        retrieval.delete("p1", "right")

        with pytest.raises(PasteNotFound):
            retrieval.view("p1")

    @pytest.mark.parametrize("token", ["wrong", "", "right-but-longer", "%%%"])
    def test_non_matching_tokens_are_forbidden(self, store, retrieval, token):
        create_paste(store, token="right")

        with pytest.raises(DeletionForbidden):
            retrieval.delete("p1", token)
        assert retrieval.view("p1")

    def test_unknown_id_is_forbidden_too(self, retrieval):
        with pytest.raises(DeletionForbidden) as exc_info:
            retrieval.delete("missing", "whatever")
        assert exc_info.value.reason == "invalid_token"
