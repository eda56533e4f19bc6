from __future__ import annotations

import pytest

from golden_axe.core.exceptions import TransientError
from golden_axe.core.retry import retry_transient, transient_retrying


class _Flaky(TransientError):
    pass


@pytest.mark.anyio
async def test_retry_transient_retries_until_success() -> None:
    calls = {"count": 0}

    @retry_transient(max_attempts=3, base_wait=0, max_wait=0)
    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise _Flaky("try again")
        return "ok"

    assert await flaky() == "ok"
    assert calls["count"] == 3
    assert flaky.__name__ == "flaky"


@pytest.mark.anyio
async def test_retry_transient_reraises_last_error() -> None:
    calls = {"count": 0}

    @retry_transient(max_attempts=2, base_wait=0, max_wait=0)
    async def always_down() -> None:
        calls["count"] += 1
        raise _Flaky(f"attempt {calls['count']}")

    with pytest.raises(_Flaky, match="attempt 2"):
        await always_down()


@pytest.mark.anyio
async def test_retry_transient_ignores_other_errors() -> None:
    calls = {"count": 0}

    @retry_transient(max_attempts=5, base_wait=0, max_wait=0)
    async def broken() -> None:
        calls["count"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await broken()
    assert calls["count"] == 1


@pytest.mark.anyio
async def test_transient_retrying_loop() -> None:
    calls = {"count": 0}

    async for attempt in transient_retrying(max_attempts=None, base_wait=0, max_wait=0):
        with attempt:
            calls["count"] += 1
            if calls["count"] < 4:
                raise _Flaky("again")

    assert calls["count"] == 4
