"""Prometheus metrics for the chat pipeline.

Provides counters and histograms for tracking:
- Chat turn outcomes and durations per mode
- Orchestrator stage latency
- Tool and outbound search calls
- Reformatting fallbacks and rate-limit rejections
- PDF ingestion results
"""

from prometheus_client import Counter, Histogram

# Outbound API metrics
api_calls_total = Counter(
    "api_calls_total",
    "Total external API calls",
    ["api_name", "status"],  # success/failure/empty
)

api_call_duration_seconds = Histogram(
    "api_call_duration_seconds",
    "API call duration in seconds",
    ["api_name"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

# Rate limiter metrics
rate_limiter_throttled_total = Counter(
    "rate_limiter_throttled_total",
    "Total outbound requests throttled by rate limiter",
    ["api_name"],
)

chat_rate_limited_total = Counter(
    "chat_rate_limited_total",
    "Total inbound chat requests rejected by the per-client rate limit",
)

# Chat system metrics
chat_requests_total = Counter(
    "chat_requests_total",
    "Total chat turns by mode and outcome",
    ["mode", "status"],  # success/error/cancelled
)

chat_response_duration_seconds = Histogram(
    "chat_response_duration_seconds",
    "Chat turn duration in seconds",
    ["mode"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0],
)

chat_stream_fragments_total = Counter(
    "chat_stream_fragments_total",
    "Total content fragments streamed to clients",
)

orchestrator_stage_duration_seconds = Histogram(
    "orchestrator_stage_duration_seconds",
    "Duration of each orchestrator stage in seconds",
    ["stage"],  # gather/retrieve/stream/reformat
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0],
)

tool_calls_total = Counter(
    "tool_calls_total",
    "Tool invocations made during context gathering",
    ["tool", "status"],
)

formatter_fallbacks_total = Counter(
    "formatter_fallbacks_total",
    "Times the reformatting stage returned the unformatted answer",
    ["reason"],  # error/empty/content_changed
)

pdf_ingestions_total = Counter(
    "pdf_ingestions_total",
    "PDF ingestion attempts",
    ["status"],
)
