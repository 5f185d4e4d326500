import asyncio

from context_flow.debounce import Debouncer


def _collector():
    settled = []

    async def on_settle(ev):
        settled.append(ev)

    return settled, on_settle


def test_burst_settles_once_with_last_kind():
    async def run_case():
        settled, on_settle = _collector()
        deb = Debouncer(0.05, on_settle)
        for kind in ("modified", "modified", "removed"):
            deb.push("a.ts", kind)
            await asyncio.sleep(0.01)
        assert deb.pending == {"a.ts": "removed"}
        await asyncio.sleep(0.15)
        await deb.drain()
        return settled

    settled = asyncio.run(run_case())
    assert [(e.path, e.kind) for e in settled] == [("a.ts", "removed")]


def test_many_events_within_window_emit_exactly_one():
    async def run_case():
        settled, on_settle = _collector()
        deb = Debouncer(0.05, on_settle)
        for _ in range(25):
            deb.push("src/app.py", "modified")
        await deb.drain()
        return settled

    settled = asyncio.run(run_case())
    assert len(settled) == 1
    assert settled[0].kind == "modified"


def test_ignored_paths_never_settle():
    async def run_case():
        settled, on_settle = _collector()
        deb = Debouncer(0.02, on_settle, should_ignore=lambda p: p.endswith(".log"))
        results = [deb.push("app.log", "modified") for _ in range(10)]
        await asyncio.sleep(0.1)
        await deb.drain()
        return settled, results

    settled, results = asyncio.run(run_case())
    assert settled == []
    assert not any(results)


def test_distinct_paths_coalesce_independently():
    async def run_case():
        settled, on_settle = _collector()
        deb = Debouncer(0.03, on_settle)
        deb.push("a.ts", "modified")
        deb.push("b.ts", "added")
        deb.push("a.ts", "modified")
        await deb.drain()
        return settled

    settled = asyncio.run(run_case())
    assert sorted((e.path, e.kind) for e in settled) == [("a.ts", "modified"), ("b.ts", "added")]


def test_settled_change_is_not_cancelled_by_new_events():
    async def run_case():
        started, finished = [], []

        async def slow(ev):
            started.append(ev.kind)
            await asyncio.sleep(0.1)
            finished.append(ev.kind)

        deb = Debouncer(0.02, slow)
        deb.push("a.ts", "modified")
        await asyncio.sleep(0.05)  # first change is now settling
        deb.push("a.ts", "removed")
        await deb.drain()
        return started, finished

    started, finished = asyncio.run(run_case())
    assert started == ["modified", "removed"]
    assert sorted(finished) == ["modified", "removed"]


def test_handler_errors_are_contained():
    async def run_case():
        seen = []

        async def flaky(ev):
            seen.append(ev.path)
            if ev.path == "bad":
                raise RuntimeError("boom")

        deb = Debouncer(0.01, flaky)
        deb.push("bad", "modified")
        deb.push("good", "modified")
        await deb.drain()
        return seen

    assert sorted(asyncio.run(run_case())) == ["bad", "good"]


def test_cancel_all_drops_pending_timers():
    async def run_case():
        settled, on_settle = _collector()
        deb = Debouncer(0.05, on_settle)
        deb.push("a.ts", "modified")
        deb.cancel_all()
        await asyncio.sleep(0.1)
        await deb.drain()
        return settled

    assert asyncio.run(run_case()) == []
