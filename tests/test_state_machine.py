"""
Tests for index state, transitions and the reader/writer lock.
"""

import asyncio

import pytest

from hnswrag.core.locks import ReadWriteLock
from hnswrag.core.state_machine import IndexState, IndexStateMachine, IndexStatus
from hnswrag.rag.hnsw import HNSWIndex
from hnswrag.rag.retriever import Retriever


def make_retriever(generation: int = 1) -> Retriever:
    return Retriever(HNSWIndex(seed=0), {}, generation=generation)


class TestIndexState:
    """The tagged state value."""

    def test_ready_requires_retriever(self):
        with pytest.raises(ValueError):
            IndexState(IndexStatus.READY)

    def test_not_loaded_cannot_carry_retriever(self):
        with pytest.raises(ValueError):
            IndexState(IndexStatus.NOT_LOADED, make_retriever())

    def test_constructors(self):
        retriever = make_retriever()
        assert IndexState.ready(retriever).is_ready
        assert IndexState.ready(retriever).retriever is retriever
        assert not IndexState.not_loaded().is_ready


class TestIndexStateMachine:
    """Transitions and invalidation of replaced retrievers."""

    def test_initial_state(self):
        machine = IndexStateMachine()
        assert machine.state.status is IndexStatus.NOT_LOADED
        assert machine.history == []

    def test_replacing_ready_invalidates_old_retriever(self):
        machine = IndexStateMachine()
        first, second = make_retriever(1), make_retriever(2)

        machine.transition(IndexState.ready(first), event="load")
        machine.transition(IndexState.ready(second), event="build")

        assert not first.is_valid
        assert second.is_valid
        assert [t.event for t in machine.history] == ["load", "build"]
        assert machine.history[-1].generation == 2

    def test_delete_invalidates(self):
        machine = IndexStateMachine()
        retriever = make_retriever()
        machine.transition(IndexState.ready(retriever), event="build")

        record = machine.transition(IndexState.not_loaded(), event="delete")

        assert not retriever.is_valid
        assert record.from_status is IndexStatus.READY
        assert record.to_status is IndexStatus.NOT_LOADED

    def test_disallowed_event(self):
        machine = IndexStateMachine()
        with pytest.raises(ValueError):
            machine.transition(IndexState.ready(make_retriever()), event="delete")
        assert machine.state.status is IndexStatus.NOT_LOADED

    def test_history_is_bounded(self):
        machine = IndexStateMachine(max_history=3)
        for _ in range(5):
            machine.transition(IndexState.not_loaded(), event="delete")
        assert len(machine.history) == 3

    def test_state_info(self):
        machine = IndexStateMachine()
        machine.transition(IndexState.ready(make_retriever(4)), event="load")

        info = machine.get_current_state_info()

        assert info == {"status": "ready", "generation": 4, "transitions": 1, "last_event": "load"}


class TestReadWriteLock:
    """Shared readers, exclusive writers, writer preference."""

    @pytest.mark.asyncio
    async def test_readers_share(self):
        lock = ReadWriteLock()
        async with lock.read():
            async with lock.read():
                assert lock.readers == 2
        assert lock.readers == 0

    @pytest.mark.asyncio
    async def test_writer_waits_for_readers(self):
        lock = ReadWriteLock()
        events = []
        reader_in = asyncio.Event()
        release_reader = asyncio.Event()

        async def reader():
            async with lock.read():
                reader_in.set()
                await release_reader.wait()
                events.append("reader done")

        async def writer():
            await reader_in.wait()
            async with lock.write():
                events.append("writer in")

        tasks = [asyncio.create_task(reader()), asyncio.create_task(writer())]
        await asyncio.sleep(0.01)
        assert events == []
        release_reader.set()
        await asyncio.gather(*tasks)

        assert events == ["reader done", "writer in"]

    @pytest.mark.asyncio
    async def test_waiting_writer_blocks_new_readers(self):
        lock = ReadWriteLock()
        order = []
        first_in = asyncio.Event()
        release_first = asyncio.Event()

        async def first_reader():
            async with lock.read():
                first_in.set()
                await release_first.wait()

        async def writer():
            async with lock.write():
                order.append("writer")

        async def late_reader():
            async with lock.read():
                order.append("late reader")

        t1 = asyncio.create_task(first_reader())
        await first_in.wait()
        t2 = asyncio.create_task(writer())
        await asyncio.sleep(0.01)
        t3 = asyncio.create_task(late_reader())
        await asyncio.sleep(0.01)
        assert order == []

        release_first.set()
        await asyncio.gather(t1, t2, t3)
        assert order == ["writer", "late reader"]

    @pytest.mark.asyncio
    async def test_cancelled_writer_releases_waiting_readers(self):
        lock = ReadWriteLock()
        first_in = asyncio.Event()
        release_first = asyncio.Event()

        async def first_reader():
            async with lock.read():
                first_in.set()
                await release_first.wait()

        async def writer():
            async with lock.write():
                pass

        t1 = asyncio.create_task(first_reader())
        await first_in.wait()
        t2 = asyncio.create_task(writer())
        await asyncio.sleep(0.01)
        t2.cancel()
        with pytest.raises(asyncio.CancelledError):
            await t2

        async with lock.read():
            assert lock.readers == 2
        release_first.set()
        await t1
        assert not lock.writer_active
