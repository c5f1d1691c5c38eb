import logging
import sys
import time

from dnssd_stream.config.config import configure_module
from dnssd_stream.stream import ServiceStream
from dnssd_stream.support.events import QueuedEventSource
from dnssd_stream.support.loop import AsyncLoop
from dnssd_stream.support.retry_strategy import PeriodRetryStrategy, RetryStrategy

logger = logging.getLogger(__name__)

# configured in monitor.default.cfg
retry_period = 5.0     # seconds between attempts to subscribe
poll_interval = 0.5    # seconds to wait for notifications in each loop


class ServiceMonitor:
    """
    Keeps a subscription to a stream open, subscribing again after the subscription ends with an error.
    Subscription attempts are spaced out by the retry strategy. Each new subscription starts new lineages, so
    services found before the error will be found again.

    The subscription is run on a background thread. Its records, failures and errors are queued on `events`,
    and published when update() is called, so handlers run on the thread calling update().

    :param stream: the ServiceStream to monitor
    :param retry_strategy: determines how long to wait before subscribing again
    :param poll_interval: how long each loop on the background thread waits for notifications
    """

    def __init__(self, stream: ServiceStream, retry_strategy: RetryStrategy=None, poll_interval=None):
        self.stream = stream
        self.retry_strategy = retry_strategy or PeriodRetryStrategy(retry_period)
        self.poll_interval = poll_interval if poll_interval is not None else globals()['poll_interval']
        self.events = QueuedEventSource()
        self.subscription = None
        self.loop = AsyncLoop(self._maintain_loop)

    @property
    def subscribed(self):
        return self.subscription is not None and not self.subscription.closed

    def _subscribe(self):
        self.subscription = self.stream.subscribe(self.events.post, self.events.post, self._subscription_failed)
        logger.info("subscribed to %s", self.stream)

    def _subscription_failed(self, error):
        logger.warning("subscription to %s ended: %s", self.stream, error)
        self.events.post(error)

    def maintain(self, current_time=time.time):
        """
        Subscribes when there is no open subscription and the retry strategy allows it, then
        processes the pending notifications of the subscription.
        :param current_time: the function giving the current time
        :return: the number of seconds until a subscription can next be tried, or 0 if subscribed
        """
        if not self.subscribed:
            delay = self.retry_strategy(current_time())
            if delay > 0:
                return delay
            try:
                self._subscribe()
            except Exception as e:
                logger.exception("unable to subscribe to %s: %s", self.stream, e)
                return self.retry_strategy(current_time(), dryRun=True)
        self.subscription.update(self.poll_interval)
        return 0

    def _maintain_loop(self):
        delay = self.maintain()
        if delay > 0:
            self.loop.wait(delay)

    def start(self):
        """ maintains the subscription on a background thread """
        self.loop.start()

    def stop(self):
        """ stops the background thread and ends the subscription """
        self.loop.stop()
        subscription = self.subscription
        self.subscription = None
        if subscription is not None:
            subscription.unsubscribe()

    def update(self):
        """ Publishes the notifications received since the last update.
        Handlers added to `events` receive ServiceRecord, ResolutionFailure, QueryFailure and EngineError instances.
        :return: the number of notifications published
        """
        return self.events.publish()


configure_module(sys.modules[__name__])
