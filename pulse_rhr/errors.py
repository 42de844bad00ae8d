"""Error taxonomy for device sessions and the measurement pipeline."""


class PulseRhrError(Exception):
    """Base class for all pulse_rhr errors."""

    code = "error"


# Discovery


class DiscoveryError(PulseRhrError):
    code = "discovery_failed"


class NoSelection(DiscoveryError):
    """The device-selection step was aborted."""

    code = "no_selection"


class NoMatch(DiscoveryError):
    """No device advertises the required service."""

    code = "no_match"


class ScanTransportError(DiscoveryError):
    """The scanner could not start or stop, e.g. the adapter is off."""

    code = "scan_transport"


# Connection


class ConnectError(PulseRhrError):
    code = "connect_failed"


class ConnectTransportError(ConnectError):
    """Link-level failure while connecting or subscribing."""

    code = "connect_transport"


class ServiceMissing(ConnectError):
    """Mandatory heart rate service or characteristic is absent."""

    code = "service_missing"


class ConnectCancelled(ConnectError):
    """A local disconnect() superseded the connect in progress."""

    code = "connect_cancelled"


# Decoding (recovered locally, never surfaced)


class DecodeError(PulseRhrError, ValueError):
    code = "decode_failed"


class TruncatedPayload(DecodeError):
    """Payload is shorter than the width implied by its flags."""

    code = "truncated"


# Profile sync


class SyncError(PulseRhrError):
    code = "sync_failed"


class NotBound(SyncError):
    """No write characteristic was resolved for this session."""

    code = "not_bound"


class SyncTransportError(SyncError):
    code = "sync_transport"


# Controller


class ControllerError(PulseRhrError):
    code = "controller_error"


class NotAuthenticated(ControllerError):
    code = "not_authenticated"


class NotReady(ControllerError):
    """Device is not connected."""

    code = "not_ready"


class AlreadyMeasuring(ControllerError):
    code = "already_measuring"


class DisconnectedDuringTest(ControllerError):
    """Remote side dropped the link while a measurement window was open."""

    code = "disconnected_during_test"
