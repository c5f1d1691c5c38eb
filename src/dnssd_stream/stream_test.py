import threading
from unittest import TestCase
from unittest.mock import Mock, call

import timeout_decorator
from hamcrest import assert_that, is_, calling, raises, has_length, instance_of

from dnssd_stream.engine.base import EngineError
from dnssd_stream.engine.base_test import FakeEngine
from dnssd_stream.record import ServiceIdentity, ServiceRecord
from dnssd_stream.stream import Pipeline, ServiceStream, Stage, Subscription, TransformStream
from dnssd_stream.support.loop_test import debug_timeout

printer = ServiceIdentity('Printer', '_ipp._tcp', 'local.')


class PipelineTest(TestCase):

    def setUp(self):
        self.sink = Mock()
        self.sut = Pipeline(self.sink)

    def test_posted_calls_run_on_pump(self):
        fn = Mock()
        self.sut.post(fn, 1, 2)
        fn.assert_not_called()
        assert_that(self.sut.pump(), is_(1))
        fn.assert_called_once_with(1, 2)

    def test_calls_run_in_order(self):
        fn = Mock()
        for i in range(5):
            self.sut.post(fn, i)
        self.sut.pump()
        fn.assert_has_calls([call(i) for i in range(5)])

    def test_calls_posted_while_pumping_are_run(self):
        fn = Mock()
        self.sut.post(lambda: self.sut.post(fn, 'again'))
        assert_that(self.sut.pump(), is_(2))
        fn.assert_called_once_with('again')

    def test_close_closes_stages_in_reverse(self):
        order = []
        first = Mock()
        first.close.side_effect = lambda: order.append('first')
        second = Mock()
        second.close.side_effect = lambda: order.append('second')
        self.sut.add(first)
        self.sut.add(second)
        self.sut.close()
        assert_that(order, is_(['second', 'first']))

    def test_close_continues_after_stage_error(self):
        failing = Mock()
        failing.close.side_effect = ValueError()
        other = Mock()
        self.sut.add(other)
        self.sut.add(failing)
        self.sut.close()
        other.close.assert_called_once_with()

    def test_close_discards_posted_calls(self):
        fn = Mock()
        self.sut.post(fn)
        self.sut.close()
        self.sut.post(fn)
        assert_that(self.sut.pump(), is_(0))
        fn.assert_not_called()

    def test_calls_after_close_in_same_batch_are_dropped(self):
        fn = Mock()
        self.sut.post(self.sut.close)
        self.sut.post(fn)
        assert_that(self.sut.pump(), is_(1))
        fn.assert_not_called()

    def test_fail_closes_then_notifies_sink_once(self):
        stage = Mock()
        self.sut.add(stage)
        error = EngineError("oops")
        self.sut.fail(error)
        self.sut.fail(error)
        stage.close.assert_called_once_with()
        self.sink.on_error.assert_called_once_with(error)
        assert_that(self.sut.closed, is_(True))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_pump_waits_for_post_from_other_thread(self):
        fn = Mock()
        timer = threading.Timer(0.05, self.sut.post, args=(fn, 'x'))
        timer.start()
        try:
            assert_that(self.sut.pump(5), is_(1))
        finally:
            timer.cancel()
        fn.assert_called_once_with('x')

    @timeout_decorator.timeout(debug_timeout(5))
    def test_second_pumping_thread_waits_for_the_first(self):
        order = []
        started = threading.Event()
        release = threading.Event()

        def first():
            started.set()
            release.wait()
            order.append(1)
        self.sut.post(first)
        pumping = threading.Thread(target=self.sut.pump)
        pumping.start()
        started.wait()

        self.sut.post(order.append, 2)
        waiting = threading.Thread(target=self.sut.pump)
        waiting.start()
        try:
            waiting.join(0.1)
            assert_that(self.sut.mailbox.event_queue.qsize(), is_(1))
            self.sut.post(order.append, 3)
        finally:
            release.set()
        pumping.join()
        waiting.join()
        assert_that(order, is_([1, 2, 3]))


class RecordingStream(ServiceStream):
    """ A root stream whose stage is driven directly by the test. """

    def __init__(self, engine=None):
        super().__init__(engine)
        self.stages = []

    def _open(self, pipeline, downstream):
        stage = Stage(pipeline, downstream)
        self.stages.append(stage)
        return stage


class FailingStream(ServiceStream):

    def _open(self, pipeline, downstream):
        Stage(pipeline, downstream)
        raise EngineError("cannot start")


class SubscriptionTest(TestCase):

    def setUp(self):
        self.stream = RecordingStream()

    def test_subscribe_adds_handlers(self):
        on_record, on_failure, on_error = Mock(), Mock(), Mock()
        sut = self.stream.subscribe(on_record, on_failure, on_error)
        assert_that(sut.records.handlers(), is_((on_record,)))
        assert_that(sut.failures.handlers(), is_((on_failure,)))
        assert_that(sut.errors.handlers(), is_((on_error,)))

    def test_each_subscription_has_its_own_stages(self):
        s1 = self.stream.subscribe()
        s2 = self.stream.subscribe()
        assert_that(self.stream.stages, has_length(2))
        s1.unsubscribe()
        assert_that(s2.closed, is_(False))

    def test_records_and_failures_delivered_on_update(self):
        on_record, on_failure = Mock(), Mock()
        sut = self.stream.subscribe(on_record, on_failure)
        stage = self.stream.stages[0]
        record = ServiceRecord(printer)
        stage.pipeline.post(stage.on_record, record)
        stage.pipeline.post(stage.on_failure, 'failure')
        on_record.assert_not_called()
        assert_that(sut.update(), is_(2))
        on_record.assert_called_once_with(record)
        on_failure.assert_called_once_with('failure')

    def test_error_with_handler(self):
        on_error = Mock()
        sut = self.stream.subscribe(on_error=on_error)
        stage = self.stream.stages[0]
        error = EngineError("oops")
        stage.pipeline.post(stage.on_error, error)
        sut.update()
        on_error.assert_called_once_with(error)
        assert_that(sut.error, is_(error))
        assert_that(sut.closed, is_(True))
        sut.update()

    def test_error_raised_from_update_without_handler(self):
        sut = self.stream.subscribe()
        stage = self.stream.stages[0]
        stage.pipeline.post(stage.on_error, EngineError("oops"))
        assert_that(calling(sut.update), raises(EngineError, "oops"))
        assert_that(calling(sut.update), raises(EngineError, "oops"))

    def test_context_manager_unsubscribes(self):
        with self.stream.subscribe() as sut:
            assert_that(sut, is_(instance_of(Subscription)))
        assert_that(sut.closed, is_(True))

    def test_failed_open_closes_created_stages(self):
        assert_that(calling(FailingStream(None).subscribe), raises(EngineError))

    def test_unsubscribe_twice(self):
        sut = self.stream.subscribe()
        sut.unsubscribe()
        sut.unsubscribe()
        assert_that(sut.closed, is_(True))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_update_with_timeout_returns_when_nothing_arrives(self):
        sut = self.stream.subscribe()
        assert_that(sut.update(0.01), is_(0))


class TransformStreamTest(TestCase):

    def test_defaults_to_upstream_engine(self):
        engine = FakeEngine()
        sut = TransformStream(ServiceStream(engine))
        assert_that(sut.engine, is_(engine))

    def test_explicit_engine(self):
        engine = FakeEngine()
        sut = TransformStream(ServiceStream(FakeEngine()), engine)
        assert_that(sut.engine, is_(engine))

    def test_stages_chained(self):
        upstream = RecordingStream()
        created = []

        class Forward(TransformStream):
            def _create_stage(self, pipeline, downstream):
                stage = Stage(pipeline, downstream)
                created.append(stage)
                return stage

        records = []
        subscription = Forward(upstream).subscribe(records.append)
        root = upstream.stages[0]
        assert_that(root.downstream, is_(created[0]))
        root.pipeline.post(root.on_record, ServiceRecord(printer))
        subscription.update()
        assert_that(records, has_length(1))

    def test_compose_applies_operator(self):
        stream = RecordingStream()
        operator = Mock()
        assert_that(stream.compose(operator), is_(operator.return_value))
        operator.assert_called_once_with(stream)

    def test_root_stream_is_abstract(self):
        assert_that(calling(ServiceStream(None).subscribe), raises(NotImplementedError))
