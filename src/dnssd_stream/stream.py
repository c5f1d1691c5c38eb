"""
Service streams and subscriptions.

A ServiceStream describes a chain of stages - a root producer such as a browse, followed by any number of
transforms such as resolve and query_records. Nothing happens until the stream is subscribed. Each call to
subscribe() builds a fresh chain of stages that belongs to the returned Subscription.

## Threading

The engine calls back on its own threads. Those callbacks never touch stage state directly - they post to the
subscription's mailbox. The mailbox is drained on the thread that calls Subscription.update(), under the
subscription's lock, and that is the only place where stages run. Each subscription is therefore a
single-threaded owner of its stages, and the notifications for a service are delivered in the order they
were produced.

unsubscribe() takes the same lock, so it can be called from any thread. Anything still in the mailbox when
the subscription closes is discarded.
"""
import logging
import threading

from dnssd_stream.support.events import EventSource, QueuedEventSource

logger = logging.getLogger(__name__)


class RecordSink:
    """ Receives the output of a stage. """

    def on_record(self, record):
        """ called with each ServiceRecord produced upstream """
        raise NotImplementedError

    def on_failure(self, failure):
        """ called with an out-of-band, per-service failure notification """
        raise NotImplementedError

    def on_error(self, error):
        """ called once with the error that terminates the subscription """
        raise NotImplementedError


class Pipeline:
    """
    The state shared by the stages of one subscription - the mailbox that engine threads post to, and the
    lock that stages run under.
    """

    def __init__(self, sink: RecordSink):
        self.sink = sink
        self.lock = threading.RLock()
        self.pump_lock = threading.RLock()    # one thread at a time takes calls from the mailbox
        self.mailbox = QueuedEventSource()
        self.mailbox += self._deliver
        self.closed = False
        self._stages = []

    @staticmethod
    def _deliver(fn, *args):
        fn(*args)

    def add(self, stage):
        self._stages.append(stage)

    def post(self, fn, *args):
        """ arranges for fn to be called with args by the stages' thread. Can be called from any thread. """
        if not self.closed:
            self.mailbox.post(fn, *args)

    def pump(self, timeout=None):
        """
        Runs the posted calls on the calling thread, until the mailbox is empty or the pipeline closes.
        A thread calling pump() while another is pumping waits for it to finish.
        :param timeout: when not None, waits up to this many seconds for the first call to be posted.
        :return: the number of calls run
        """
        delivered = 0
        with self.pump_lock:
            events = self.mailbox.drain(timeout)
            while events:
                with self.lock:
                    for args, kwargs in events:
                        if self.closed:
                            return delivered
                        self.mailbox.fire(*args, **kwargs)
                        delivered += 1
                events = self.mailbox.drain()
        return delivered

    def fail(self, error):
        """ terminates the pipeline with the given error. Must be called on the stages' thread. """
        with self.lock:
            if self.closed:
                return
            self.close()
            self.sink.on_error(error)

    def close(self):
        """ closes every stage, starting with the producer at the root of the chain """
        with self.lock:
            if self.closed:
                return
            self.closed = True
            for stage in reversed(self._stages):
                try:
                    stage.close()
                except Exception as e:
                    logger.exception("error closing %s: %s", stage, e)
            self._stages = []
            self.mailbox.drain()


class Stage(RecordSink):
    """
    A running step in a subscription. The default behavior forwards everything downstream.
    """

    def __init__(self, pipeline: Pipeline, downstream: RecordSink):
        self.pipeline = pipeline
        self.downstream = downstream
        pipeline.add(self)

    def on_record(self, record):
        self.downstream.on_record(record)

    def on_failure(self, failure):
        self.downstream.on_failure(failure)

    def on_error(self, error):
        self.pipeline.fail(error)

    def close(self):
        """ template method to release any resources held by the stage """
        pass


class Subscription(RecordSink):
    """
    The consumer's end of a subscribed stream.

    Handlers are added to `records`, `failures` and `errors`, and are called on the thread that calls update().
    - records receive each ServiceRecord
    - failures receive ResolutionFailure and QueryFailure notifications
    - errors receive the EngineError that ends the subscription
    """

    def __init__(self):
        self.records = EventSource()
        self.failures = EventSource()
        self.errors = EventSource()
        self.error = None
        self._pipeline = Pipeline(self)

    def _open(self, stream):
        try:
            stream._open(self._pipeline, self)
        except Exception:
            self._pipeline.close()
            raise

    @property
    def closed(self):
        return self._pipeline.closed

    def on_record(self, record):
        self.records.fire(record)

    def on_failure(self, failure):
        self.failures.fire(failure)

    def on_error(self, error):
        self.error = error
        self.errors.fire(error)

    def update(self, timeout=None):
        """
        Delivers pending notifications to the handlers on the calling thread.
        :param timeout: when not None, waits up to this many seconds for a notification to arrive.
        :return: the number of notifications processed
        :raises EngineError: when the subscription has ended with an error and there are no error handlers
        """
        delivered = self._pipeline.pump(timeout)
        if self.error is not None and not self.errors.handlers():
            raise self.error
        return delivered

    def unsubscribe(self):
        """ ends the subscription, cancelling all work in progress """
        self._pipeline.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class ServiceStream:
    """
    A stream of ServiceRecord values that can be subscribed to.

    :param engine: the DiscoveryEngine the stream uses. Transforms default to the engine of their upstream.
    """

    def __init__(self, engine):
        self.engine = engine

    def _open(self, pipeline: Pipeline, downstream: RecordSink) -> Stage:
        """ template method - creates the stages for this stream in the given pipeline. """
        raise NotImplementedError

    def subscribe(self, on_record=None, on_failure=None, on_error=None) -> Subscription:
        """
        Starts the stream.
        :param on_record: optional handler added to Subscription.records
        :param on_failure: optional handler added to Subscription.failures
        :param on_error: optional handler added to Subscription.errors
        """
        subscription = Subscription()
        if on_record:
            subscription.records.add(on_record)
        if on_failure:
            subscription.failures.add(on_failure)
        if on_error:
            subscription.errors.add(on_error)
        subscription._open(self)
        return subscription

    def compose(self, operator):
        """
        Applies an operator to this stream.
        :param operator: a callable that takes a ServiceStream and returns a ServiceStream
        """
        return operator(self)

    def resolve(self, engine=None) -> 'ServiceStream':
        """ enriches the records from this stream with the host, port and addresses of each service. """
        from dnssd_stream.resolve import ResolveStream
        return ResolveStream(self, engine)

    def query_records(self, engine=None) -> 'ServiceStream':
        """ enriches the resolved records from this stream with the TXT records of each service. """
        from dnssd_stream.query import QueryStream
        return QueryStream(self, engine)


class TransformStream(ServiceStream):
    """ A stream whose stages consume the records of an upstream stream. """

    def __init__(self, upstream: ServiceStream, engine=None):
        super().__init__(engine if engine is not None else upstream.engine)
        self.upstream = upstream

    def _open(self, pipeline, downstream):
        stage = self._create_stage(pipeline, downstream)
        self.upstream._open(pipeline, stage)
        return stage

    def _create_stage(self, pipeline, downstream) -> Stage:
        raise NotImplementedError
