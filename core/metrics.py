from prometheus_client import Counter, Gauge, Histogram

DEPLOYMENT_COUNTER = Counter(
    'deployer_deployments_total',
    'Total number of deployments by outcome',
    ['outcome'],
)

DEPLOY_FAILURE_COUNTER = Counter(
    'deployer_deploy_failures_total',
    'Failed deployments and pipeline stages by error kind',
    ['kind'],
)

HEALTH_POLL_COUNTER = Counter(
    'deployer_health_polls_total',
    'Health endpoint probes by result',
    ['result'],
)

DEPLOY_DURATION = Histogram(
    'deployer_deploy_duration_seconds',
    'Wall time of a deploy from pull to final health verdict',
    buckets=(1, 5, 10, 30, 60, 120, 300),
)

SLOT_OCCUPIED_GAUGE = Gauge(
    'deployer_slot_occupied',
    'Whether an instance currently occupies the service port slot',
    ['port'],
)
