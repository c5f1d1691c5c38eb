"""
Service records - immutable snapshots of a service discovered via DNS-SD.

A record starts out as the bare identity reported by browsing, and is enriched by later stages with the
host, port and addresses from resolution, and the TXT records from querying. Enrichment never modifies a
record - a ServiceRecordBuilder copies the record, applies the changes and builds a new one.

Records compare and hash on their identity alone, so two snapshots of the same service are equal
regardless of how far each has been enriched.
"""
import ipaddress
from collections import namedtuple
from types import MappingProxyType

#: Flag that indicates that the service was lost
LOST = 1 << 8

_NO_TXT_RECORDS = MappingProxyType({})


def qualify_domain(domain):
    """
    Appends the trailing root label to a domain.
    >>> qualify_domain('local')
    'local.'
    >>> qualify_domain('local.')
    'local.'
    """
    return domain if domain.endswith('.') else domain + '.'


class ServiceIdentity(namedtuple('ServiceIdentity', ['service_name', 'reg_type', 'domain'])):
    """
    The natural key of a service - the service instance name, the registration type and the domain.
    """
    __slots__ = ()

    @property
    def service_type(self):
        """
        The fully qualified service type.
        >>> ServiceIdentity('Printer', '_http._tcp', 'local.').service_type
        '_http._tcp.local.'
        """
        return self.reg_type + '.' + qualify_domain(self.domain)

    @property
    def fullname(self):
        """
        >>> ServiceIdentity('Printer', '_http._tcp', 'local').fullname
        'Printer._http._tcp.local.'
        """
        return self.service_name + '.' + self.service_type

    @classmethod
    def from_fullname(cls, fullname, service_type):
        """
        Splits a fully qualified service instance name into an identity.
        :param fullname: the instance name, e.g. 'Printer._http._tcp.local.'
        :param service_type: the service type the instance was found under, e.g. '_http._tcp.local.'

        >>> ServiceIdentity.from_fullname('Printer._http._tcp.local.', '_http._tcp.local.')
        ServiceIdentity(service_name='Printer', reg_type='_http._tcp', domain='local.')
        """
        service_type = qualify_domain(service_type)
        fullname = qualify_domain(fullname)
        suffix = '.' + service_type
        if not fullname.endswith(suffix):
            raise ValueError("service %s is not of type %s" % (fullname, service_type))
        labels = service_type.split('.')
        protocol = next((i for i, label in enumerate(labels) if label in ('_tcp', '_udp')), 1)
        return cls(fullname[:-len(suffix)], '.'.join(labels[:protocol + 1]), '.'.join(labels[protocol + 1:]))

    def __str__(self):
        return self.fullname


def _address(factory, value):
    return None if value is None else factory(value)


class ServiceRecord:
    """
    A snapshot of a service at some point during its enrichment.

    :param identity: the ServiceIdentity of the service
    :param flags: the flags reported by the engine. The LOST bit marks the service as no longer available,
        in which case the remaining fields describe the last known state of the service.
    :param if_index: the index of the network interface the service was discovered on
    """
    __slots__ = ('_identity', '_flags', '_if_index', '_hostname', '_port', '_ipv4', '_ipv6', '_txt_records')

    def __init__(self, identity: ServiceIdentity, flags=0, if_index=0, hostname=None, port=None,
                 ipv4=None, ipv6=None, txt_records=None):
        self._identity = ServiceIdentity(*identity)
        self._flags = flags
        self._if_index = if_index
        self._hostname = hostname
        self._port = port
        self._ipv4 = _address(ipaddress.IPv4Address, ipv4)
        self._ipv6 = _address(ipaddress.IPv6Address, ipv6)
        self._txt_records = MappingProxyType(dict(txt_records)) if txt_records else _NO_TXT_RECORDS

    @property
    def identity(self) -> ServiceIdentity:
        return self._identity

    @property
    def service_name(self):
        return self._identity.service_name

    @property
    def reg_type(self):
        return self._identity.reg_type

    @property
    def domain(self):
        return self._identity.domain

    @property
    def flags(self):
        return self._flags

    @property
    def if_index(self):
        return self._if_index

    @property
    def hostname(self):
        return self._hostname

    @property
    def port(self):
        return self._port

    @property
    def ipv4(self):
        return self._ipv4

    @property
    def ipv6(self):
        return self._ipv6

    @property
    def txt_records(self):
        """ a read-only mapping of TXT record keys to values """
        return self._txt_records

    @property
    def is_lost(self):
        """ True when the LOST flag is set """
        return (self._flags & LOST) == LOST

    @property
    def is_resolved(self):
        """ True when the host and port of the service are known """
        return self._hostname is not None and self._port is not None

    def builder(self) -> 'ServiceRecordBuilder':
        """ a builder initialized to the contents of this record """
        return ServiceRecordBuilder.from_record(self)

    def as_lost(self, flags=None) -> 'ServiceRecord':
        """
        Marks this snapshot as lost, keeping the enrichment fields as the last known state.
        :param flags: the flags to use. The LOST bit is always set.
        """
        flags = self._flags if flags is None else flags
        return self.builder().flags(flags | LOST).build()

    def __eq__(self, other):
        if not isinstance(other, ServiceRecord):
            return NotImplemented
        return self._identity == other._identity

    def __hash__(self):
        return hash(self._identity)

    def __repr__(self):
        return "ServiceRecord{service_name=%r, reg_type=%r, domain=%r, lost=%s, if_index=%d, " \
               "hostname=%r, port=%r, ipv4=%s, ipv6=%s, txt_records=%r}" % \
               (self.service_name, self.reg_type, self.domain, self.is_lost, self._if_index,
                self._hostname, self._port, self._ipv4, self._ipv6, dict(self._txt_records))


class ServiceRecordBuilder:
    """
    Stages the changes for a new ServiceRecord. The identity is fixed when the builder is created.
    Each setter returns the builder, so changes can be chained, and build() produces the record.

    >>> record = ServiceRecordBuilder(ServiceIdentity('Printer', '_ipp._tcp', 'local.')).port(631).build()
    >>> record.port
    631
    """

    def __init__(self, identity, flags=0, if_index=0):
        self._identity = identity
        self._flags = flags
        self._if_index = if_index
        self._hostname = None
        self._port = None
        self._ipv4 = None
        self._ipv6 = None
        self._txt_records = {}

    @classmethod
    def from_record(cls, record: ServiceRecord):
        builder = cls(record.identity, record.flags, record.if_index)
        builder._hostname = record.hostname
        builder._port = record.port
        builder._ipv4 = record.ipv4
        builder._ipv6 = record.ipv6
        builder._txt_records = dict(record.txt_records)
        return builder

    def flags(self, flags):
        self._flags = flags
        return self

    def if_index(self, if_index):
        self._if_index = if_index
        return self

    def hostname(self, hostname):
        self._hostname = hostname
        return self

    def port(self, port):
        self._port = port
        return self

    def ipv4(self, address):
        self._ipv4 = address
        return self

    def ipv6(self, address):
        self._ipv6 = address
        return self

    def txt_records(self, txt_records):
        """ replaces the TXT records """
        self._txt_records = dict(txt_records or {})
        return self

    def build(self) -> ServiceRecord:
        return ServiceRecord(self._identity, flags=self._flags, if_index=self._if_index,
                             hostname=self._hostname, port=self._port, ipv4=self._ipv4, ipv6=self._ipv6,
                             txt_records=self._txt_records)
