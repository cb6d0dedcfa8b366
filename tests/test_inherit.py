import asyncio
import copy
import sys

import pytest
from quantalogic_tasklocal import (
    AccessError,
    InheritableLocal,
    NotSet,
    PollState,
    create_task,
    get_registry,
    inherit_task_local,
)

TEST_VALUE = InheritableLocal('test_value')
ANOTHER_TEST_VALUE = InheritableLocal('another_test_value')


class Unclonable:
    """A value that refuses to be copied."""

    def __copy__(self):
        raise TypeError("Unclonable cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("Unclonable cannot be copied")


async def read(local):
    return local.get()


@pytest.mark.asyncio
class TestScope:
    async def test_basic(self):
        out = await TEST_VALUE.scope(5, read(TEST_VALUE))
        assert out == 5

    async def test_with_value(self):
        async def body():
            return TEST_VALUE.with_value(lambda v: v * 2)

        assert await TEST_VALUE.scope(5, body()) == 10

    async def test_fail_without_any_scope(self):
        with pytest.raises(NotSet) as excinfo:
            TEST_VALUE.with_value(lambda v: v)
        assert excinfo.value.reason is AccessError.NO_CONTEXT
        assert excinfo.value.name == 'test_value'

    async def test_fail_when_only_another_value_is_set(self):
        with pytest.raises(NotSet) as excinfo:
            await ANOTHER_TEST_VALUE.scope("foo", read(TEST_VALUE))
        assert excinfo.value.reason is AccessError.NOT_IN_TABLE

    async def test_get_default(self):
        assert TEST_VALUE.get(None) is None
        assert TEST_VALUE.get("fallback") == "fallback"
        assert not TEST_VALUE.is_set()

    async def test_use_another_test_value(self):
        out = await ANOTHER_TEST_VALUE.scope("foo", read(ANOTHER_TEST_VALUE))
        assert out == "foo"

    async def test_both_values_together(self):
        async def body():
            return TEST_VALUE.get(), ANOTHER_TEST_VALUE.get()

        out = await TEST_VALUE.scope(5, ANOTHER_TEST_VALUE.scope("foo", body()))
        assert out == (5, "foo")

    async def test_nested_scopes_restore_outer_value(self):
        async def inner():
            return TEST_VALUE.get()

        async def outer():
            before = TEST_VALUE.get()
            during = await TEST_VALUE.scope(3, inner())
            after = TEST_VALUE.get()
            return before, during, after

        assert await TEST_VALUE.scope(2, outer()) == (2, 3, 2)

    async def test_nested_scope_restores_after_failure(self):
        async def failing():
            assert TEST_VALUE.get() == 3
            raise ValueError("boom")

        async def outer():
            with pytest.raises(ValueError, match="boom"):
                await TEST_VALUE.scope(3, failing())
            return TEST_VALUE.get()

        assert await TEST_VALUE.scope(2, outer()) == 2
        assert not TEST_VALUE.is_set()

    async def test_value_not_visible_to_concurrent_unrelated_task(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            started.set()
            await release.wait()
            return TEST_VALUE.get()

        async def outsider():
            await started.wait()
            try:
                return TEST_VALUE.get(None)
            finally:
                release.set()

        held, seen = await asyncio.gather(TEST_VALUE.scope(1, holder()), outsider())
        assert held == 1
        assert seen is None

    async def test_scope_survives_suspension(self):
        async def body():
            first = TEST_VALUE.get()
            await asyncio.sleep(0)
            await asyncio.sleep(0.01)
            return first, TEST_VALUE.get()

        assert await TEST_VALUE.scope(9, body()) == (9, 9)
        assert not TEST_VALUE.is_set()


class TestSyncScope:
    def test_basic_sync(self):
        assert TEST_VALUE.sync_scope(5, TEST_VALUE.get) == 5

    def test_sync_use_both(self):
        def body():
            return TEST_VALUE.with_value(lambda v: ANOTHER_TEST_VALUE.with_value(lambda s: (v, s)))

        out = TEST_VALUE.sync_scope(5, ANOTHER_TEST_VALUE.sync_scope, "foo", body)
        assert out == (5, "foo")

    def test_sync_scope_passes_arguments(self):
        out = TEST_VALUE.sync_scope(5, lambda a, b=0: TEST_VALUE.get() + a + b, 1, b=2)
        assert out == 8

    def test_stack_discipline_on_failure(self):
        def inner():
            assert TEST_VALUE.get() == 2
            raise KeyError("inner")

        def outer():
            with pytest.raises(KeyError):
                TEST_VALUE.sync_scope(2, inner)
            return TEST_VALUE.get()

        assert TEST_VALUE.sync_scope(1, outer) == 1
        assert not TEST_VALUE.is_set()


@pytest.mark.asyncio
class TestInheritance:
    async def test_basic_inherit(self):
        async def parent():
            return await asyncio.create_task(inherit_task_local(read(TEST_VALUE)))

        assert await TEST_VALUE.scope(5, parent()) == 5

    async def test_end_to_end_with_create_task(self):
        async def parent():
            return await create_task(read(TEST_VALUE), name="child")

        assert await TEST_VALUE.scope(5, parent()) == 5

    async def test_inherit_repeatedly(self):
        async def child():
            return await create_task(read(TEST_VALUE))

        async def parent():
            return await create_task(child())

        assert await TEST_VALUE.scope(5, parent()) == 5

    async def test_not_inherited_if_future_not_wrapped(self):
        async def parent():
            return await asyncio.create_task(read(TEST_VALUE))

        with pytest.raises(NotSet) as excinfo:
            await TEST_VALUE.scope(5, parent())
        assert excinfo.value.reason is AccessError.NO_CONTEXT

    async def test_not_inherited_repeatedly_if_chain_broken(self):
        async def child():
            return await create_task(read(TEST_VALUE))

        async def parent():
            return await asyncio.create_task(child())

        with pytest.raises(NotSet):
            await TEST_VALUE.scope(5, parent())

    async def test_wrapped_outside_any_scope(self):
        with pytest.raises(NotSet):
            await create_task(read(TEST_VALUE))

    async def test_inherit_several_values(self):
        async def child():
            return TEST_VALUE.get(), ANOTHER_TEST_VALUE.get()

        async def parent():
            return await create_task(child())

        out = await TEST_VALUE.scope(1, ANOTHER_TEST_VALUE.scope("two", parent()))
        assert out == (1, "two")

    async def test_inherit_does_not_copy(self):
        value = Unclonable()
        with pytest.raises(TypeError):
            copy.copy(value)

        async def child():
            return TEST_VALUE.get()

        async def parent():
            return TEST_VALUE.get(), await create_task(child())

        mine, theirs = await TEST_VALUE.scope(value, parent())
        assert mine is value
        assert theirs is value

    async def test_snapshot_taken_at_wrap_time(self):
        wrapped = inherit_task_local(read(TEST_VALUE))
        assert wrapped.state is PollState.UNPOLLED

        async def parent():
            return await asyncio.create_task(wrapped)

        with pytest.raises(NotSet):
            await TEST_VALUE.scope(5, parent())

    async def test_value_outlives_parent_scope(self):
        async def parent():
            return inherit_task_local(read(TEST_VALUE))

        wrapped = await TEST_VALUE.scope(5, parent())
        assert not TEST_VALUE.is_set()
        assert await asyncio.create_task(wrapped) == 5

    async def test_later_parent_scope_not_seen_by_child(self):
        async def parent():
            wrapped = inherit_task_local(read(TEST_VALUE))
            return await TEST_VALUE.scope(6, asyncio.create_task(wrapped))

        assert await TEST_VALUE.scope(5, parent()) == 5

    async def test_child_scope_does_not_leak_to_parent(self):
        async def child():
            return await TEST_VALUE.scope(7, read(TEST_VALUE))

        async def parent():
            seen = await create_task(child())
            return seen, TEST_VALUE.get()

        assert await TEST_VALUE.scope(5, parent()) == (7, 5)

    async def test_result_and_exception_pass_through(self):
        async def failing():
            raise LookupError(TEST_VALUE.get())

        async def parent():
            return await create_task(failing())

        with pytest.raises(LookupError) as excinfo:
            await TEST_VALUE.scope("why", parent())
        assert type(excinfo.value) is LookupError
        assert excinfo.value.args == ("why",)

    async def test_cancelled_child_reads_value_in_finally(self):
        seen = []
        started = asyncio.Event()

        async def child():
            try:
                started.set()
                await asyncio.sleep(10)
            finally:
                seen.append(TEST_VALUE.get())

        async def parent():
            task = create_task(child())
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return task

        task = await TEST_VALUE.scope(7, parent())
        assert task.cancelled()
        assert seen == [7]

    async def test_inline_await_hides_values_set_after_wrapping(self):
        wrapped = inherit_task_local(read(TEST_VALUE))

        async def parent():
            with pytest.raises(NotSet):
                await wrapped
            return TEST_VALUE.get()

        assert await TEST_VALUE.scope(6, parent()) == 6

    async def test_inline_await_sees_captured_value_not_current_one(self):
        wrapped = TEST_VALUE.sync_scope(5, inherit_task_local, read(TEST_VALUE))

        async def parent():
            return await wrapped, TEST_VALUE.get()

        assert await TEST_VALUE.scope(6, parent()) == (5, 6)

    async def test_gather_wrapped_children(self):
        async def child(offset):
            await asyncio.sleep(0)
            return TEST_VALUE.get() + offset

        async def parent():
            return await asyncio.gather(*(inherit_task_local(child(i)) for i in range(3)))

        assert await TEST_VALUE.scope(10, parent()) == [10, 11, 12]


@pytest.mark.asyncio
@pytest.mark.skipif(sys.version_info < (3, 12), reason="eager_task_factory needs Python 3.12")
class TestEagerTasks:
    """Children whose first step runs synchronously inside the parent's poll."""

    async def run_eager(self, value, parent):
        loop = asyncio.get_running_loop()
        loop.set_task_factory(asyncio.eager_task_factory)
        try:
            return await TEST_VALUE.scope(value, parent())
        finally:
            loop.set_task_factory(None)

    async def test_unwrapped_child_does_not_see_parent_value(self):
        async def parent():
            task = asyncio.create_task(read(TEST_VALUE))
            with pytest.raises(NotSet) as info:
                await task
            return info.value.reason

        assert await self.run_eager(5, parent) is AccessError.NO_CONTEXT

    async def test_child_wrapped_before_scope_sees_nothing(self):
        wrapped = inherit_task_local(read(TEST_VALUE))

        async def parent():
            task = asyncio.create_task(wrapped)
            with pytest.raises(NotSet):
                await task
            return TEST_VALUE.get()

        assert await self.run_eager(6, parent) == 6

    async def test_child_wrapped_inside_scope_inherits(self):
        async def parent():
            return await create_task(read(TEST_VALUE))

        assert await self.run_eager(7, parent) == 7

    async def test_eager_child_scope_does_not_leak_to_parent(self):
        async def child():
            return await ANOTHER_TEST_VALUE.scope("child", read(ANOTHER_TEST_VALUE))

        async def parent():
            assert await asyncio.create_task(child()) == "child"
            return ANOTHER_TEST_VALUE.is_set()

        assert await self.run_eager(1, parent) is False


class TestDefaultRegistry:
    def test_declarations_are_registered(self):
        keys = {entry.key for entry in get_registry().entries}
        assert TEST_VALUE.key in keys
        assert ANOTHER_TEST_VALUE.key in keys

    def test_asyncio_run_accepts_wrapper(self):
        def body():
            return asyncio.run(inherit_task_local(read(TEST_VALUE)))

        assert TEST_VALUE.sync_scope(4, body) == 4
