from unittest import TestCase
from unittest.mock import Mock

from hamcrest import assert_that, is_, calling, raises, none, empty, has_length

from dnssd_stream.engine.base import EngineError, ERROR_TIMEOUT
from dnssd_stream.record import LOST, ServiceIdentity, ServiceRecord
from dnssd_stream.stage import EnrichmentFailure, EnrichmentStage, QueryFailure, ResolutionFailure, Task, TaskTable
from dnssd_stream.stream import Pipeline

printer = ServiceIdentity('Printer', '_ipp._tcp', 'local.')
scanner = ServiceIdentity('Scanner', '_ipp._tcp', 'local.')


class EnrichmentFailureTest(TestCase):

    def test_error_code_from_engine_error(self):
        sut = ResolutionFailure(printer, EngineError("no answer", ERROR_TIMEOUT))
        assert_that(sut.error_code, is_(ERROR_TIMEOUT))

    def test_error_code_none_for_other_errors(self):
        assert_that(QueryFailure(printer, ValueError()).error_code, is_(none()))

    def test_failures_are_values(self):
        error = EngineError("no answer")
        assert_that(ResolutionFailure(printer, error) == ResolutionFailure(printer, error), is_(True))
        assert_that(ResolutionFailure(printer, error) == QueryFailure(printer, error), is_(False))


class TaskTest(TestCase):

    def test_cancel_calls_on_cancel_once(self):
        on_cancel = Mock()
        sut = Task(printer, on_cancel)
        sut.cancel()
        sut.cancel()
        on_cancel.assert_called_once_with()
        assert_that(sut.cancelled, is_(True))

    def test_cancel_without_callable(self):
        sut = Task(printer)
        sut.cancel()
        assert_that(sut.cancelled, is_(True))


class TaskTableTest(TestCase):

    def setUp(self):
        self.sut = TaskTable()

    def test_add(self):
        task = Task(printer)
        self.sut.add(task)
        assert_that(printer in self.sut, is_(True))
        assert_that(self.sut.is_current(task), is_(True))
        assert_that(len(self.sut), is_(1))

    def test_one_task_per_identity(self):
        self.sut.add(Task(printer))
        assert_that(calling(self.sut.add).with_args(Task(printer)), raises(ValueError))

    def test_finish_current_task(self):
        task = Task(printer)
        self.sut.add(task)
        assert_that(self.sut.finish(task), is_(True))
        assert_that(printer in self.sut, is_(False))

    def test_finish_superseded_task(self):
        old = Task(printer)
        self.sut.add(old)
        self.sut.cancel(printer)
        new = Task(printer)
        self.sut.add(new)
        assert_that(self.sut.is_current(old), is_(False))
        assert_that(self.sut.finish(old), is_(False))
        assert_that(self.sut.is_current(new), is_(True))

    def test_cancel(self):
        on_cancel = Mock()
        self.sut.add(Task(printer, on_cancel))
        assert_that(self.sut.cancel(printer), is_(True))
        on_cancel.assert_called_once_with()
        assert_that(self.sut.cancel(printer), is_(False))

    def test_cancel_all(self):
        c1, c2 = Mock(), Mock()
        self.sut.add(Task(printer, c1))
        self.sut.add(Task(scanner, c2))
        self.sut.cancel_all()
        c1.assert_called_once_with()
        c2.assert_called_once_with()
        assert_that(self.sut.identities(), is_(empty()))


class EnrichmentStageTest(TestCase):

    def setUp(self):
        self.downstream = Mock()
        self.pipeline = Pipeline(self.downstream)
        self.sut = EnrichmentStage(self.pipeline, self.downstream, Mock())

    def test_available_records_passed_on_and_remembered(self):
        record = ServiceRecord(printer, port=631)
        self.sut.on_record(record)
        self.downstream.on_record.assert_called_once_with(record)
        assert_that(self.sut.latest(printer).port, is_(631))

    def test_lost_carries_latest_state(self):
        self.sut.on_record(ServiceRecord(printer, hostname='printer.local', port=631))
        self.sut.on_record(ServiceRecord(printer, flags=LOST | 2))
        lost = self.downstream.on_record.call_args[0][0]
        assert_that(lost.is_lost, is_(True))
        assert_that(lost.flags, is_(LOST | 2))
        assert_that(lost.hostname, is_('printer.local'))
        assert_that(self.sut.latest(printer), is_(none()))

    def test_lost_unknown_service_passed_on(self):
        record = ServiceRecord(printer, flags=LOST)
        self.sut.on_record(record)
        assert_that(self.downstream.on_record.call_args[0][0].is_lost, is_(True))

    def test_lost_cancels_task(self):
        on_cancel = Mock()
        self.sut.tasks.add(Task(printer, on_cancel))
        self.sut.on_record(ServiceRecord(printer, flags=LOST))
        on_cancel.assert_called_once_with()
        assert_that(self.sut.tasks, has_length(0))

    def test_fail_sends_failure_downstream(self):
        error = EngineError("oops")
        self.sut._fail(printer, error)
        self.downstream.on_failure.assert_called_once_with(EnrichmentFailure(printer, error))

    def test_close_cancels_tasks(self):
        on_cancel = Mock()
        self.sut.tasks.add(Task(printer, on_cancel))
        self.sut.on_record(ServiceRecord(scanner))
        self.sut.close()
        on_cancel.assert_called_once_with()
        assert_that(self.sut.latest(scanner), is_(none()))
