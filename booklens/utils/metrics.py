"""Prometheus metrics shared across services."""
from prometheus_client import Counter, Histogram

DOCUMENTS_PROCESSED = Counter(
    "booklens_documents_processed_total",
    "Documents run through ingestion",
    ["file_type", "outcome"],
)

SEARCHES = Counter(
    "booklens_searches_total",
    "Keyword searches by the strategy that produced results",
    ["strategy"],
)

SUMMARY_CACHE_REQUESTS = Counter(
    "booklens_summary_cache_requests_total",
    "Progress summary requests by cache outcome",
    ["result"],
)

LLM_REQUEST_SECONDS = Histogram(
    "booklens_llm_request_seconds",
    "Latency of language model calls",
    ["operation"],
)
