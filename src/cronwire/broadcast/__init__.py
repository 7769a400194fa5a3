"""Broadcast hub — live telemetry fan-out to connected listeners."""

from cronwire.broadcast.hub import HEARTBEAT_KEY, BroadcastHub, Listener, sample_metrics

__all__ = ["HEARTBEAT_KEY", "BroadcastHub", "Listener", "sample_metrics"]
