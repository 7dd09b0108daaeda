from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class LockProviderType(str, Enum):
    """Distributed lock backends."""

    REDIS = "redis"
    MEMORY = "memory"


class TaxProviderType(str, Enum):
    """Tax engine backends."""

    FLAT_RATE = "flat_rate"
