from prometheus_client import Counter, Histogram

ANALYZER_REQUESTS = Counter("analyzer_requests_total", "Semantic analyzer attempts", ["analyzer"])
ANALYZER_ERRORS   = Counter("analyzer_errors_total",   "Semantic analyzer failures", ["analyzer", "kind"])
ANALYZER_LATENCY  = Histogram("analyzer_request_seconds", "Semantic analyzer latency", ["analyzer"])

CONSENSUS_RESOLUTIONS = Counter("consensus_resolutions_total", "Consensus outcomes", ["method"])

CACHE_HITS      = Counter("result_cache_hits_total",      "Result cache hits")
CACHE_MISSES    = Counter("result_cache_misses_total",    "Result cache misses")
CACHE_EVICTIONS = Counter("result_cache_evictions_total", "Result cache evictions")
