from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

WEBHOOK_EVENTS = Counter(
    "dployr_webhook_events_total",
    "Inbound webhook deliveries by provider and outcome",
    ["provider", "outcome"],
)
DEPLOYMENTS_TOTAL = Counter(
    "dployr_deployments_total",
    "Deploy runs by trigger and terminal status",
    ["trigger", "status"],
)
DEPLOY_DURATION = Histogram(
    "dployr_deploy_duration_seconds",
    "Wall time of deploy runs that acquired the project claim",
    ["trigger", "status"],
)
ARCHIVE_REJECTIONS = Counter(
    "dployr_archive_rejections_total",
    "Uploaded archives rejected before extraction",
    ["reason"],
)
