from __future__ import annotations

from typing import AsyncIterator, TypeVar

T = TypeVar("T")


async def close_stream(stream: AsyncIterator[T]) -> None:
    """Close ``stream`` if it is closable (async generators are)."""
    close = getattr(stream, "aclose", None)
    if close is not None:
        await close()


async def _empty() -> AsyncIterator[T]:
    return
    yield  # pragma: no cover


async def _replay(first: T, stream: AsyncIterator[T]) -> AsyncIterator[T]:
    try:
        yield first
        async for item in stream:
            yield item
    finally:
        await close_stream(stream)


async def prime(stream: AsyncIterator[T]) -> AsyncIterator[T]:
    """Pull the first element of ``stream`` now and return an equivalent iterator.

    Errors raised while the upstream is being opened surface here, before a
    response has been committed, instead of in the middle of the body.
    """
    try:
        first = await stream.__anext__()
    except StopAsyncIteration:
        await close_stream(stream)
        return _empty()
    except BaseException:
        await close_stream(stream)
        raise
    return _replay(first, stream)
