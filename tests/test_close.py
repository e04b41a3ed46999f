import unittest
from unittest.mock import MagicMock

import pytest

from tagbind import Container, DestructorError, Lifetime


class Resource:
    def __init__(self, name):
        self.name = name
        self.closed = False


class TestClose(unittest.TestCase):
    root: Container
    cont: Container

    def setUp(self):
        self.root = Container()
        self.cont = self.root.new_scope()
        self.torn_down: list[str] = []

    def _register(self, tag, lifetime=Lifetime.TRANSIENT, fail=False):
        def dtor(r):
            if fail:
                msg = f"cannot close {r.name}"
                raise OSError(msg)
            r.closed = True
            self.torn_down.append(r.name)

        self.root.use_factory(tag, lambda _: Resource(tag), dtor, lifetime=lifetime)

    def test_close_invokes_destructor(self):
        self._register("db")
        r = self.cont.resolve("db")
        assert r.closed is False

        self.cont.close()
        assert r.closed is True

    def test_close_runs_in_reverse_construction_order(self):
        for tag in ("a", "b", "c"):
            self._register(tag)
        for tag in ("b", "a", "c"):
            self.cont.resolve(tag)

        self.cont.close()
        assert self.torn_down == ["c", "a", "b"]

    def test_close_stops_at_first_failing_destructor(self):
        self._register("first")
        self._register("bad", fail=True)
        self._register("last")
        for tag in ("first", "bad", "last"):
            self.cont.resolve(tag)

        with pytest.raises(DestructorError) as ctx:
            self.cont.close()

        assert ctx.value.tag == "bad"
        assert isinstance(ctx.value.error, OSError)
        assert isinstance(ctx.value.__cause__, OSError)
        assert self.torn_down == ["last"]

    def test_close_drains_pending_list(self):
        self._register("db")
        self.cont.resolve("db")

        self.cont.close()
        self.cont.close()
        assert self.torn_down == ["db"]

    def test_scoped_cache_hit_does_not_record_second_destructor(self):
        self._register("db", lifetime=Lifetime.SCOPED)
        self.cont.resolve("db")
        self.cont.resolve("db")

        self.cont.close()
        assert self.torn_down == ["db"]

    def test_transient_destructor_per_instance(self):
        self._register("conn")
        self.cont.resolve("conn")
        self.cont.resolve("conn")

        self.cont.close()
        assert self.torn_down == ["conn", "conn"]

    def test_destructors_are_recorded_on_resolving_scope(self):
        self._register("db", lifetime=Lifetime.SCOPED)
        self.cont.resolve("db")

        self.root.close()
        assert self.torn_down == []
        self.cont.close()
        assert self.torn_down == ["db"]

    def test_singleton_destructor_belongs_to_root(self):
        self._register("pool", lifetime=Lifetime.SINGLETON)
        self.cont.resolve("pool")
        self.root.new_scope().resolve("pool")

        self.cont.close()
        assert self.torn_down == []

        self.root.close()
        assert self.torn_down == ["pool"]

    def test_close_does_not_touch_ancestors(self):
        self._register("db")
        self.root.resolve("db")
        self.cont.resolve("db")

        self.cont.close()
        assert self.torn_down == ["db"]
        assert len(self.root._destructors) == 1

    def test_context_manager_closes_scope(self):
        self._register("db")
        with self.root.new_scope() as scope:
            r = scope.resolve("db")
            assert r.closed is False
        assert r.closed is True


def test_destructor_receives_created_instance():
    c = Container()
    dtor = MagicMock()
    sentinel = object()
    c.use_factory("svc", lambda _: sentinel, dtor)

    c.resolve("svc")
    c.close()

    dtor.assert_called_once_with(sentinel)


def test_close_without_resolutions_is_noop():
    c = Container()
    dtor = MagicMock()
    c.use_factory("svc", lambda _: object(), dtor)

    c.close()
    dtor.assert_not_called()
