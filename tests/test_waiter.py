import asyncio

from site_mdx import cleaner as cleaner_module
from site_mdx import waiter as waiter_module
from site_mdx.config import WaitConfig
from site_mdx.waiter import ContentSnapshot, DynamicContentWaiter

from fakes import FakePage


def _page(spa_signals, snapshots):
    """A page whose snapshot script answers from ``snapshots`` in order."""
    remaining = list(snapshots)

    def evaluate(script, arg):
        if script is cleaner_module._SPA_SIGNALS_JS:
            return spa_signals
        if script is waiter_module._SNAPSHOT_JS:
            return remaining.pop(0) if len(remaining) > 1 else remaining[0]
        raise AssertionError("unexpected script")

    return FakePage(evaluate=evaluate)


def _recording_sleep(calls):
    async def sleep(seconds, token=None):
        calls.append(seconds)

    return sleep


def _snap(text, elements, main):
    return {"textLength": text, "elementCount": elements, "mainTextLength": main}


def test_empty_root_page_becomes_dynamic():
    page = _page(
        {"markers": ["#root"], "scripts": 2, "bodyLength": 22},
        [_snap(0, 5, 0), _snap(800, 60, 750), _snap(1600, 120, 1500), _snap(1600, 120, 1500)],
    )
    sleeps = []
    waiter = DynamicContentWaiter(WaitConfig(), sleep=_recording_sleep(sleeps))
    assert asyncio.run(waiter.wait_for_stable(page)) is True
    assert sleeps[0] == 3.0
    assert sleeps[-1] == 2.0
    assert sleeps.count(1.0) == 2


def test_static_page_skips_waiting():
    page = _page({"markers": [], "scripts": 1, "bodyLength": 90_000}, [_snap(10, 10, 10)])
    sleeps = []
    waiter = DynamicContentWaiter(sleep=_recording_sleep(sleeps))
    assert asyncio.run(waiter.wait_for_stable(page)) is False
    assert sleeps == []


def test_always_check_detects_change_on_static_page():
    page = _page(
        {"markers": [], "scripts": 1, "bodyLength": 90_000},
        [_snap(100, 10, 100), _snap(400, 10, 100), _snap(400, 10, 100)],
    )
    sleeps = []
    waiter = DynamicContentWaiter(WaitConfig(always_check=True), sleep=_recording_sleep(sleeps))
    assert asyncio.run(waiter.wait_for_stable(page)) is True
    assert sleeps[-1] == 2.0


def test_poll_gives_up_after_max_attempts():
    growing = [_snap(i * 100, i * 10, i * 100) for i in range(20)]
    page = _page({"markers": ["#app"], "scripts": 0, "bodyLength": 0}, growing)
    sleeps = []
    waiter = DynamicContentWaiter(WaitConfig(max_attempts=3), sleep=_recording_sleep(sleeps))
    assert asyncio.run(waiter.wait_for_stable(page)) is True
    assert sleeps == [3.0, 1.0, 1.0, 1.0, 2.0]


def test_snapshot_thresholds():
    config = WaitConfig()
    base = ContentSnapshot(100, 10, 100)
    assert base.is_stable(ContentSnapshot(149, 14, 149), config)
    assert base.differs(ContentSnapshot(150, 10, 100), config)
    assert base.differs(ContentSnapshot(100, 15, 100), config)
    assert ContentSnapshot.from_mapping(None) == ContentSnapshot()
