from prometheus_client import Counter, Histogram, REGISTRY

# API Metrics
REQUEST_COUNT = Counter("api_requests_total",
                        "Total API Requests",
                        ["method", "endpoint"],
                        registry=REGISTRY)

REQUEST_LATENCY = Histogram("api_request_duration_seconds",
                            "API Request Duration",
                            ["method", "endpoint"],
                            registry=REGISTRY)

ERROR_COUNT = Counter("api_errors_total",
                      "Total API Errors",
                      ["method", "endpoint", "exception"],
                      registry=REGISTRY)

# Moderation Metrics
MODERATION_DECISIONS = Counter("moderation_decisions_total",
                               "Moderation Decisions By Outcome",
                               ["outcome"],
                               registry=REGISTRY)

CACHE_LOOKUPS = Counter("moderation_cache_lookups_total",
                        "Moderation Cache Lookups",
                        ["result"],
                        registry=REGISTRY)

CLASSIFIER_ERRORS = Counter("classifier_errors_total",
                            "Moderation Classifier Failures",
                            ["kind"],
                            registry=REGISTRY)

CLASSIFIER_LATENCY = Histogram("classifier_request_duration_seconds",
                               "Moderation Classifier Call Duration",
                               registry=REGISTRY)
