"""Configuration for pricegate."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings (environment variables prefixed ``PRICEGATE_``)."""

    # Key-value store
    kv_backend: str = "redis"  # "redis" or "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "pricegate:"

    # Circuit breaker
    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 60.0  # Seconds before a recovery probe
    circuit_state_ttl: int = 3600  # KV TTL of breaker state
    degraded_failure_count: int = 3  # Failures at which an endpoint is unhealthy

    # Retry / backoff
    max_attempts: int = 3
    backoff_base: float = 1.0  # Seconds
    backoff_multiplier: float = 2.0
    backoff_max: float = 30.0  # Seconds
    backoff_jitter_max: float = 1.0  # Seconds

    # Cache TTLs (seconds)
    fresh_ttl: int = 60  # Regular price lookups
    popular_ttl: int = 300  # Popular keys
    fallback_ttl: int = 3600  # Stale tier

    # Cache warming
    popular_keys: list[str] = ["bitcoin", "ethereum", "tether", "binancecoin", "solana"]
    warm_interval_ratio: float = 0.8  # Fraction of popular_ttl between passes
    warm_concurrency: int = 1

    # Batching
    batch_size: int = 10

    class Config:
        env_prefix = "PRICEGATE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
