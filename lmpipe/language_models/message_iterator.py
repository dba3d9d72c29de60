"""
Message iterators feeding the debug language models.

The `Debug` provider of the model factory returns a langchain fake chat
model that replies with the messages produced by these iterators, so
that pipelines can be exercised without network access or API keys.

Example:
    ```python
    from lmpipe.language_models.message_iterator import (
        yield_message,
        yield_constant_message,
    )
    replies = yield_message("Answer")
    next(replies)  # 'Answer 1'
    next(replies)  # 'Answer 2'

    replies = yield_constant_message("Paris is the capital of France")
    next(replies)  # 'Paris is the capital of France'
    ```
"""

from collections.abc import Iterator


class MessageIterator(Iterator[str]):
    """Infinite iterator of numbered messages, '{prefix} {counter}'.
    The counter starts at 1."""

    def __init__(self, prefix: str = "Message") -> None:
        self.prefix = prefix
        self.counter = 1

    def __next__(self) -> str:
        message = f"{self.prefix} {self.counter}"
        self.counter += 1
        return message


class ConstantMessageIterator(Iterator[str]):
    """Infinite iterator repeating the same message."""

    def __init__(self, message: str = "Message") -> None:
        self.message = message

    def __next__(self) -> str:
        return self.message


def yield_message(prefix: str = "Message") -> MessageIterator:
    """
    Create an iterator of numbered messages with the given prefix:
    "Message 1", "Message 2", etc.
    """
    return MessageIterator(prefix)


def yield_constant_message(
    message: str = "Message",
) -> ConstantMessageIterator:
    """
    Create an iterator returning always the same message.

    Args:
        message: the text returned at each call of next()
    """
    return ConstantMessageIterator(message)
