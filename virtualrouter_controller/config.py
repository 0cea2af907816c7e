"""Configuration settings for the VirtualRouter controller."""

# CRD Settings
CRD_GROUP = "tmax.io"
CRD_VERSION = "v1"
CRD_PLURAL = "virtualrouters"
CRD_KIND = "VirtualRouter"
CRD_API_VERSION = f"{CRD_GROUP}/{CRD_VERSION}"

# Component name used as the source of recorded events
CONTROLLER_AGENT_NAME = "virtual-router"

# Well-known names of the supporting objects in each private namespace
SERVICE_ACCOUNT_NAME = "virtualrouter-sa"
ROLE_NAME = "virtualrouter-role"
ROLE_BINDING_NAME = "virtualrouter-rb"
VIRTUALROUTER_LABEL = "virtualrouterInstance"
VIRTUALROUTER_DAEMON_FINALIZER = "virtualrouter/daemon-finalizer"

# API group of the VPN resources the router daemon reads
NETWORK_GROUP_NAME = "network.tmaxanc.com"

# Event reasons and messages
SUCCESS_SYNCED = "Synced"
ERR_RESOURCE_EXISTS = "ErrResourceExists"
MESSAGE_RESOURCE_EXISTS = "Resource {name!r} already exists and is not managed by VirtualRouter"
MESSAGE_RESOURCE_SYNCED = "VirtualRouter synced successfully"

# Watch settings
WATCH_TIMEOUT_SECONDS = 300
RESYNC_PERIOD_SECONDS = 30
WATCH_RETRY_MAX_SECONDS = 30

# Worker settings
DEFAULT_WORKERS = 2

# Rate limiting for requeued keys
RATE_LIMIT_BASE_DELAY = 0.005
RATE_LIMIT_MAX_DELAY = 1000.0
RATE_LIMIT_QPS = 10.0
RATE_LIMIT_BURST = 100
