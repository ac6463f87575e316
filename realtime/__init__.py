"""Live change streams for dashboards."""
from realtime.hub import RealtimeHub, Subscription, ChangeEvent, STREAMS
