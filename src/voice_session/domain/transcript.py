import asyncio
from collections.abc import Callable

Publish = Callable[[str, str | None], None]


def split_words(text: str) -> list[str]:
    return (text or "").split()


def append_word(current: str, word: str) -> str:
    return f"{current} {word}" if current else word


async def replay_words(
    publish: Publish,
    previous: str,
    new: str,
    interval_seconds: float = 0.1,
) -> str:
    """Grow ``previous`` by one word of ``new`` per interval.

    The caller publishes ``previous`` itself so the host sees it without waiting
    for the task to be scheduled.
    """
    current = previous or ""
    for word in split_words(new):
        await asyncio.sleep(interval_seconds)
        current = append_word(current, word)
        publish(current, word)
    return current
