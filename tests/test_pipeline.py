"""Test pipeline composition and invocation"""

import asyncio
import unittest

from lmpipe.pipeline import (
    CancellationError,
    CancellationToken,
    ConfigurationError,
    FunctionStage,
    Pipeline,
    StageExecutionError,
    compose,
    passthrough,
)
from lmpipe.utils.logging import LoglistLogger


def add_one(x: int) -> int:
    return x + 1


def double(x: int) -> int:
    return x * 2


def to_text(x: int) -> str:
    return str(x)


def shout(text: str) -> str:
    return text.upper() + "!"


async def async_add_ten(x: int) -> int:
    await asyncio.sleep(0)
    return x + 10


class Counter:
    """A stage function recording how many times it was called."""

    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    def __call__(self, x):
        self.calls += 1
        if self.fail:
            raise RuntimeError("boom")
        return x


class TestComposition(unittest.TestCase):

    def test_sequential_equivalence(self):
        pipeline = compose(add_one, double, to_text)
        for x in range(5):
            self.assertEqual(pipeline.invoke(x), to_text(double(add_one(x))))

    def test_associativity(self):
        left = compose(compose(add_one, double), to_text)
        right = compose(add_one, compose(double, to_text))
        flat = compose(add_one, double, to_text)
        for x in (0, 3, -7):
            self.assertEqual(left.invoke(x), flat.invoke(x))
            self.assertEqual(right.invoke(x), flat.invoke(x))

    def test_compose_keeps_nested_pipeline(self):
        inner = compose(add_one, double)
        outer = compose(inner, to_text)
        self.assertEqual(len(outer), 2)
        self.assertIs(outer.first, inner)

    def test_pipe_operator_flattens(self):
        pipeline = FunctionStage(add_one) | double | to_text
        self.assertIsInstance(pipeline, Pipeline)
        self.assertEqual(len(pipeline), 3)
        self.assertEqual(pipeline.invoke(1), "4")

    def test_pipe_operator_with_callable_on_the_left(self):
        pipeline = add_one | FunctionStage(double)
        self.assertEqual(pipeline.invoke(2), 6)

    def test_pipe_method(self):
        pipeline = FunctionStage(add_one).pipe(double, to_text)
        self.assertEqual(pipeline.invoke(0), "2")

    def test_compose_list_argument(self):
        pipeline = compose([add_one, double])
        self.assertEqual(pipeline.invoke(1), 4)

    def test_single_stage(self):
        self.assertEqual(compose(add_one).invoke(1), 2)
        self.assertEqual(FunctionStage(add_one).invoke(1), 2)

    def test_passthrough(self):
        value = {'a': 1}
        self.assertIs(passthrough().invoke(value), value)

    def test_empty_pipeline(self):
        with self.assertRaises(ConfigurationError):
            compose()
        with self.assertRaises(ConfigurationError):
            Pipeline([])

    def test_configuration_error_is_value_error(self):
        with self.assertRaises(ValueError):
            compose()

    def test_type_mismatch(self):
        with self.assertRaises(ConfigurationError):
            compose(to_text, add_one)

    def test_type_mismatch_not_checked(self):
        pipeline = compose(to_text, add_one, check_types=False)
        with self.assertRaises(StageExecutionError):
            pipeline.invoke(1)

    def test_pipe_keeps_unchecked_stages(self):
        unchecked = compose(to_text, shout, add_one, check_types=False)
        pipeline = unchecked | (lambda x: x)
        self.assertEqual(len(pipeline), 4)
        self.assertFalse(pipeline.check_types)
        with self.assertRaises(StageExecutionError) as context:
            pipeline.invoke(1)
        self.assertEqual(context.exception.position, 2)

    def test_pipe_checks_junctions(self):
        with self.assertRaises(ConfigurationError):
            compose(add_one, to_text) | double
        with self.assertRaises(ConfigurationError):
            FunctionStage(to_text).pipe(compose(double, add_one))

    def test_pipe_keeps_logger(self):
        logger = LoglistLogger()
        pipeline = compose(add_one, double, logger=logger) | to_text
        self.assertIs(pipeline.logger, logger)
        pipeline = to_text | compose(shout, shout, logger=logger)
        self.assertIs(pipeline.logger, logger)
        self.assertEqual(pipeline.invoke(1), "1!!")

    def test_matching_types(self):
        pipeline = compose(add_one, to_text, shout)
        self.assertEqual(pipeline.invoke(1), "2!")

    def test_unannotated_functions_not_checked(self):
        pipeline = compose(lambda x: str(x), add_one)
        with self.assertRaises(StageExecutionError):
            pipeline.invoke(1)

    def test_invalid_stage(self):
        with self.assertRaises(ConfigurationError):
            compose(add_one, 42)

    def test_stage_names(self):
        pipeline = compose(add_one, double, name="arithmetic")
        self.assertEqual(pipeline.get_name(), "arithmetic")
        self.assertEqual(pipeline.first.get_name(), "add_one")


class TestFailures(unittest.TestCase):

    def test_failure_position(self):
        before = Counter()
        failing = Counter(fail=True)
        after = Counter()
        pipeline = compose(before, failing, after)

        with self.assertRaises(StageExecutionError) as context:
            pipeline.invoke(1)
        error = context.exception
        self.assertEqual(error.position, 1)
        self.assertEqual(error.path, (1,))
        self.assertIsInstance(error.cause, RuntimeError)
        self.assertIs(error.__cause__, error.cause)
        self.assertEqual(before.calls, 1)
        self.assertEqual(failing.calls, 1)
        self.assertEqual(after.calls, 0)

    def test_nested_failure_path(self):
        failing = Counter(fail=True)
        inner = compose(add_one, failing)
        pipeline = compose(double, {'first': inner, 'second': add_one})

        with self.assertRaises(StageExecutionError) as context:
            pipeline.invoke(1)
        error = context.exception
        self.assertEqual(error.position, 1)
        self.assertEqual(error.path, (1, 'first', 1))
        self.assertIsInstance(error.cause, RuntimeError)

    def test_cancelled_invocation(self):
        token = CancellationToken()
        token.cancel()
        counter = Counter()
        with self.assertRaises(CancellationError):
            compose(counter, add_one).invoke(1, cancel_token=token)
        self.assertEqual(counter.calls, 0)

    def test_cancellation_between_stages(self):
        token = CancellationToken()

        def cancel(x):
            token.cancel()
            return x

        after = Counter()
        with self.assertRaises(CancellationError):
            compose(cancel, after).invoke(1, cancel_token=token)
        self.assertEqual(after.calls, 0)


class TestAsyncInvocation(unittest.TestCase):

    def test_ainvoke(self):
        pipeline = compose(add_one, async_add_ten, double)
        result = asyncio.run(pipeline.ainvoke(1))
        self.assertEqual(result, 24)

    def test_async_function_in_sync_invoke(self):
        pipeline = compose(add_one, async_add_ten)
        self.assertEqual(pipeline.invoke(1), 12)

    def test_ainvoke_failure(self):
        failing = Counter(fail=True)
        pipeline = compose(add_one, failing, double)
        with self.assertRaises(StageExecutionError) as context:
            asyncio.run(pipeline.ainvoke(1))
        self.assertEqual(context.exception.position, 1)

    def test_concurrent_invocations(self):
        pipeline = compose(async_add_ten, double)

        async def run_all():
            return await asyncio.gather(
                *(pipeline.ainvoke(x) for x in range(10))
            )

        results = asyncio.run(run_all())
        self.assertEqual(results, [(x + 10) * 2 for x in range(10)])


if __name__ == '__main__':
    unittest.main()
