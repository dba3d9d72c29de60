"""
The utility class `LazyLoadingDict` memoizes objects produced by a
factory function, using the definition of the object as the key.

The package uses it to store the language models and the embedding
models created from settings (the frozen pydantic settings objects are
hashable and serve as keys), and the prompt library, where the keys are
the names of the prompts.

Example:
    ```python
    from typing import Literal

    Greeting = Literal["english", "italian"]

    def _greet(language: Greeting) -> str:
        match language:
            case "english":
                return "Hello"
            case "italian":
                return "Ciao"
            case _:
                raise ValueError(f"Invalid language: {language}")

    greetings = LazyLoadingDict(_greet)
    greetings["italian"]   # 'Ciao', created and memoized
    greetings["german"]    # ValueError, raised by the factory
    ```

Objects may also be stored directly, bypassing the factory. Existing
keys are not overwritten: delete the key first. When an object is
deleted, it is closed if it has a `close` or a `dispose` method, or
passed to the destructor function given to the constructor.

Expected behaviour: propagates the errors of the factory function
(typically ValueError or pydantic ValidationError).
"""

from collections.abc import Callable
from typing import TypeVar

# ValueT is the parameter for the stored values, KeyT for the keys.
ValueT = TypeVar('ValueT')
KeyT = TypeVar('KeyT')


class LazyLoadingDict(dict[KeyT, ValueT]):
    """A dictionary creating its values on first access.

    Args:
        key_creator_func: the factory mapping a key to its value
        destructor_func: optional function releasing a value when
            the key is deleted
    """

    def __init__(
        self,
        key_creator_func: Callable[[KeyT], ValueT],
        destructor_func: Callable[[ValueT], None] | None = None,
    ):
        super().__init__()
        self._key_creator_func = key_creator_func
        self._destructor_func = destructor_func

    def _destroy_value(self, value: ValueT) -> None:
        if self._destructor_func:
            self._destructor_func(value)
            return
        for method in ('close', 'dispose'):
            release = getattr(value, method, None)
            if callable(release):
                release()
                return

    def __getitem__(self, key: KeyT) -> ValueT:
        if key in self:
            return super().__getitem__(key)

        value: ValueT = self._key_creator_func(key)
        super().__setitem__(key, value)
        return value

    def __setitem__(self, key: KeyT, value: ValueT) -> None:
        """Store a value, bypassing the factory function.

        Raises:
            ValueError: if the key already exists in the dictionary.
        """
        if key in self:
            raise ValueError(
                f"Key '{key}' already exists. Delete it first to "
                + "overwrite."
            )
        super().__setitem__(key, value)

    def __delitem__(self, key: KeyT) -> None:
        if key in self:
            self._destroy_value(super().__getitem__(key))
        super().__delitem__(key)

    def clear(self) -> None:
        for value in list(self.values()):
            self._destroy_value(value)
        super().clear()
