from queue import Empty, Queue


class EventSource(object):
    """
    A list of handlers that are called with each event fired.
    Handlers are added and removed with `+=` and `-=` or add()/remove().
    """

    def __init__(self):
        self._handlers = []

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        self._handlers.append(handler)
        return self

    def remove(self, handler):
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def handlers(self):
        return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        self._fire(*args, **kwargs)

    def _fire(self, *args, **kwargs):
        for handler in self.handlers():
            handler(*args, **kwargs)


class QueuedEventSource(EventSource):
    """
    post() queues events from any thread. These are fired when a thread
    calls publish(), so that handlers always run on the publishing thread.
    """
    def __init__(self):
        super().__init__()
        self.event_queue = Queue()

    def post(self, *args, **kwargs):
        """ queues an event to be fired by the next call to publish() """
        self.event_queue.put((args, kwargs))

    def drain(self, timeout=None) -> list:
        """
        Removes all queued events.
        :param timeout: when not None, waits up to this many seconds for the first event to arrive.
        :return: a list of (args, kwargs) tuples in the order they were posted.
        """
        queue = self.event_queue
        events = []
        if timeout is not None:
            try:
                events.append(queue.get(timeout=timeout))
            except Empty:
                return events
        while True:
            try:
                events.append(queue.get_nowait())
            except Empty:
                return events

    def publish(self, timeout=None):
        """ publishes any queued events on the calling thread.
        :return: the number of events published
        """
        events = self.drain(timeout)
        for args, kwargs in events:
            self._fire(*args, **kwargs)
        return len(events)
