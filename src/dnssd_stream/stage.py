"""
Per-service enrichment tasks.

Resolve and query stages start work for a service when it is found, and stop that work when it is lost.
The work in progress is kept in a TaskTable keyed by service identity, which holds at most one task per
identity. A task that is no longer in the table has been cancelled or superseded, and any result that
arrives for it afterwards is discarded.
"""
import logging

from dnssd_stream.record import ServiceIdentity
from dnssd_stream.stream import Stage
from dnssd_stream.support.mixins import CommonEqualityMixin, StringerMixin

logger = logging.getLogger(__name__)


class EnrichmentFailure(CommonEqualityMixin, StringerMixin):
    """ Notification that a stage could not enrich a service. Other services are unaffected. """
    def __init__(self, identity: ServiceIdentity, error):
        """
        :param identity: the service that could not be enriched
        :param error: the exception that describes the failure, typically an EngineError
        """
        self.identity = identity
        self.error = error

    @property
    def error_code(self):
        """ the engine error code, or None when the error did not come from the engine """
        return getattr(self.error, 'error_code', None)


class ResolutionFailure(EnrichmentFailure):
    """ A service could not be resolved. """


class QueryFailure(EnrichmentFailure):
    """ The TXT records of a service could not be queried. """


class Task:
    """
    A unit of work started by a stage for one service.
    :param identity: the service the work is for
    :param cancel: the callable that stops the work, such as Future.cancel or EngineHandle.close
    """

    def __init__(self, identity: ServiceIdentity, cancel=None):
        self.identity = identity
        self.on_cancel = cancel
        self.cancelled = False

    def cancel(self):
        """ requests the work stops. Does not wait for it to stop. """
        if self.cancelled:
            return
        self.cancelled = True
        if self.on_cancel is not None:
            self.on_cancel()

    def __repr__(self):
        return "Task(%s)" % (self.identity,)


class TaskTable:
    """
    The tasks in progress, with at most one task for each service identity.
    """

    def __init__(self):
        self._tasks = {}

    def __contains__(self, identity):
        return identity in self._tasks

    def __len__(self):
        return len(self._tasks)

    def identities(self):
        return tuple(self._tasks)

    def add(self, task: Task):
        """
        :raises ValueError: if there is already a task for the identity
        """
        if task.identity in self._tasks:
            raise ValueError("a task is already active for %s" % (task.identity,))
        self._tasks[task.identity] = task

    def is_current(self, task: Task):
        """ determines if the task is the active task for its identity """
        return self._tasks.get(task.identity) is task

    def finish(self, task: Task):
        """
        Removes a task that has completed.
        :return: True if the task was the active task. False means the task was cancelled or superseded.
        """
        if not self.is_current(task):
            return False
        del self._tasks[task.identity]
        return True

    def cancel(self, identity):
        """
        Removes and cancels the task for an identity.
        :return: True if there was a task to cancel
        """
        task = self._tasks.pop(identity, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self):
        for identity in self.identities():
            self.cancel(identity)


class EnrichmentStage(Stage):
    """
    Common lifecycle for the stages that enrich records.

    Lost records cancel the task for their service and are passed on straight away, carrying the last known
    state of the service. The latest record passed on for each service is kept so that results can be
    applied to it.
    """
    failure_type = EnrichmentFailure

    def __init__(self, pipeline, downstream, engine):
        super().__init__(pipeline, downstream)
        self.engine = engine
        self.tasks = TaskTable()
        self._latest = {}       # identity -> the last record passed downstream for the current lineage

    def latest(self, identity):
        """ the last record emitted for the service, or None if it is not known or has been lost """
        return self._latest.get(identity)

    def on_record(self, record):
        if record.is_lost:
            self._lost(record)
        else:
            self._available(record)

    def _available(self, record):
        """ template method for subclasses to handle a record for an available service """
        self._emit(record)

    def _lost(self, record):
        identity = record.identity
        if self.tasks.cancel(identity):
            logger.debug("%s cancelled the task for lost service %s", type(self).__name__, identity)
        latest = self._latest.pop(identity, None)
        self.downstream.on_record(latest.as_lost(record.flags) if latest is not None else record)

    def _emit(self, record):
        self._latest[record.identity] = record
        self.downstream.on_record(record)

    def _discard(self, task, what):
        logger.debug("%s discarding %s for %s, the task is no longer active", type(self).__name__, what,
                     task.identity)

    def _fail(self, identity, error):
        failure = self.failure_type(identity, error)
        logger.warning("%s for %s: %s", type(failure).__name__, identity, error)
        self.downstream.on_failure(failure)

    def close(self):
        self.tasks.cancel_all()
        self._latest.clear()
