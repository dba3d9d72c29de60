"""Test pipeline observers"""

import unittest

from lmpipe.pipeline import (
    LoggingObserver,
    PipelineObserver,
    StageExecutionError,
    compose,
)
from lmpipe.utils.logging import LoglistLogger


class RecordingObserver(PipelineObserver):

    def __init__(self) -> None:
        self.events = []

    def on_stage_start(self, event):
        self.events.append(('start', event.path, event.value))

    def on_stage_end(self, event):
        self.events.append(('end', event.path, event.value))

    def on_stage_error(self, event):
        self.events.append(('error', event.path, event.error))


class FailingObserver(PipelineObserver):

    def on_stage_start(self, event):
        raise RuntimeError("observer failure")


def add_one(x: int) -> int:
    return x + 1


def double(x: int) -> int:
    return x * 2


class TestObservers(unittest.TestCase):

    def test_events_per_invocation(self):
        observer = RecordingObserver()
        compose(add_one, double).invoke(1, observers=[observer])
        self.assertEqual(
            observer.events,
            [
                ('start', (0,), 1),
                ('end', (0,), 2),
                ('start', (1,), 2),
                ('end', (1,), 4),
            ],
        )

    def test_events_from_construction(self):
        observer = RecordingObserver()
        pipeline = compose(add_one, double, observers=[observer])
        pipeline.invoke(1)
        pipeline.invoke(2)
        self.assertEqual(len(observer.events), 8)

    def test_nested_pipeline_observers(self):
        outer_observer = RecordingObserver()
        inner_observer = RecordingObserver()
        inner = compose(add_one, observers=[inner_observer])
        compose(double, inner).invoke(1, observers=[outer_observer])
        self.assertEqual(len(outer_observer.events), 6)
        self.assertEqual(
            inner_observer.events,
            [('start', (1, 0), 2), ('end', (1, 0), 3)],
        )

    def test_error_event(self):
        observer = RecordingObserver()

        def failing(x):
            raise ValueError("bad input")

        with self.assertRaises(StageExecutionError):
            compose(add_one, failing).invoke(1, observers=[observer])
        kind, path, error = observer.events[-1]
        self.assertEqual(kind, 'error')
        self.assertEqual(path, (1,))
        self.assertIsInstance(error, ValueError)

    def test_tags(self):
        tags = []

        class TagObserver(PipelineObserver):
            def on_stage_end(self, event):
                tags.append(event.tags)

        pipeline = compose(add_one, tags=["example"])
        pipeline.invoke(1, observers=[TagObserver()], tags=["run"])
        self.assertEqual(tags, [("run", "example")])

    def test_stream_end_event_carries_output(self):
        observer = RecordingObserver()
        pipeline = compose(add_one, lambda x: str(x))
        list(pipeline.stream(1, observers=[observer]))
        self.assertEqual(observer.events[-1], ('end', (1,), "2"))

    def test_failing_observer_is_logged(self):
        logger = LoglistLogger()
        recorder = RecordingObserver()
        pipeline = compose(add_one, double, logger=logger)
        result = pipeline.invoke(
            1, observers=[FailingObserver(), recorder]
        )
        self.assertEqual(result, 4)
        self.assertEqual(len(recorder.events), 4)
        self.assertEqual(logger.count_logs(level=1), 2)
        self.assertIn("observer failure", logger.get_logs(level=1)[0])

    def test_logging_observer(self):
        logger = LoglistLogger()
        compose(add_one, name="increment").invoke(
            1, observers=[LoggingObserver(logger)]
        )
        logs = logger.get_logs()
        self.assertEqual(len(logs), 2)
        self.assertIn("add_one", logs[0])
        self.assertIn("started", logs[0])
        self.assertIn("ended", logs[1])


if __name__ == '__main__':
    unittest.main()
