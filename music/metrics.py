"""Prometheus metric definitions for Melodia."""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

tracks_played_total = Counter(
    "melodia_tracks_played_total",
    "Total tracks that started streaming across all guilds",
)
playback_errors_total = Counter(
    "melodia_playback_errors_total",
    "Total per-track playback failures",
    ["kind"],
)
stream_fallbacks_total = Counter(
    "melodia_stream_fallbacks_total",
    "Streams opened by each tier of the format-selection policy",
    ["tier"],
)
resolutions_total = Counter(
    "melodia_resolutions_total",
    "Query resolutions by outcome",
    ["outcome"],
)
resolve_seconds = Histogram(
    "melodia_resolve_seconds",
    "Time to resolve a query into a playable item",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)
queue_size = Gauge(
    "melodia_queue_size",
    "Current queue size",
    ["guild_id"],
)
active_players = Gauge(
    "melodia_active_players",
    "Number of guilds with a live playback controller",
)
voice_connections = Gauge(
    "melodia_voice_connections",
    "Number of active voice connections",
)


def start_metrics_server(port: int = 9090) -> None:
    start_http_server(port)
