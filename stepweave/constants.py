"""Default values shared across stepweave modules."""

DEFAULT_SUSPEND_REASON = "Step requested suspension"
DEFAULT_SIGNAL_REASON = "User requested suspension"
DEFAULT_CONFIG_PATH = "config.yaml"
SNAPSHOT_SPEC_VERSION = "1.0"
