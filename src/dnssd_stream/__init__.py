"""
DNS-SD service discovery as composable streams.

- ServiceRecord: an immutable snapshot of a service. A record starts as the identity reported by browsing
  and is enriched with the host, port and addresses from resolving, and the TXT records from querying.
- DiscoveryEngine: the mDNS/DNS-SD implementation the streams run on. ZeroconfEngine uses python-zeroconf.
- BrowseStream: the services of one type in one domain, found and lost as they come and go.
- ResolveStream, QueryStream: transforms that enrich each record of an upstream stream. They are applied
  with ServiceStream.compose(), or with the resolve() and query_records() shortcuts.
- RegisterStream: advertises a service for as long as it is subscribed.
- Subscription: a running stream. Records, per-service failures and the terminating error are delivered
  to handlers when update() is called.
- ServiceMonitor: keeps a stream subscribed on a background thread, subscribing again after an error.

Lost records carry the LOST flag and the last known state of the service. A lost service's resolve or
query is cancelled, and any result that arrives for it later is dropped.


## Threading

The engine calls back on its own threads - zeroconf's browser thread and the engine's thread pool.
Callbacks are queued on the subscription, and the stages run on the thread that calls update().
One thread can service many subscriptions by calling update() on each in turn, or each subscription can be
given a thread of its own with ServiceMonitor.
"""

from dnssd_stream.browse import BrowseStream
from dnssd_stream.engine.base import DiscoveryEngine, EngineError
from dnssd_stream.facade import Dnssd
from dnssd_stream.query import QueryStream
from dnssd_stream.record import LOST, ServiceIdentity, ServiceRecord, ServiceRecordBuilder
from dnssd_stream.register import RegisterStream
from dnssd_stream.resolve import ResolveStream
from dnssd_stream.stage import QueryFailure, ResolutionFailure
from dnssd_stream.stream import ServiceStream, Subscription
