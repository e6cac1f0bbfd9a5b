from pydantic import BaseModel, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EndpointSettings(BaseModel):
    submit_url: str
    poll_url: str
    token: str
    timeout: float


class ResolverSettings(BaseModel):
    poll_interval: float
    max_wait: float
    push_head_start: float


class ServerSettings(BaseModel):
    host: str
    port: int
    debug: bool
    max_processing_seconds: int


class R2Config(BaseModel):
    account_id: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    public_domain: str


class RedisConfig(BaseModel):
    url: str
    channel_prefix: str
    record_ttl: int


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        validate_default=True,
        extra="ignore",
    )

    # Enhancement endpoints consumed by the client
    api_base_url: str = ""
    submit_path: str = "/ai-enhance"
    poll_path: str = "/ai-poll"
    api_token: str = ""
    request_timeout: float = 30.0

    poll_interval_seconds: float = 2.0
    max_wait_seconds: float = 90.0
    push_head_start_seconds: float = 1.0

    port: int = 5500
    debug: bool = False
    host: str = "0.0.0.0"
    max_processing_seconds: int = 120

    webhook_secret: str = ""
    api_secret_key: str = ""

    # Cloudflare R2 for device-local image uploads
    cloudflare_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "enhancement-inputs"
    r2_public_domain: str = ""

    # Redis for job records and change notifications
    redis_url: str = ""
    job_channel_prefix: str = "ai_generations"
    record_ttl_seconds: int = 7 * 24 * 3600

    @computed_field
    @property
    def endpoints(self) -> EndpointSettings:
        base = self.api_base_url.rstrip("/")
        return EndpointSettings(
            submit_url=f"{base}{self.submit_path}",
            poll_url=f"{base}{self.poll_path}",
            token=self.api_token,
            timeout=self.request_timeout,
        )

    @computed_field
    @property
    def resolver(self) -> ResolverSettings:
        return ResolverSettings(
            poll_interval=self.poll_interval_seconds,
            max_wait=self.max_wait_seconds,
            push_head_start=self.push_head_start_seconds,
        )

    @computed_field
    @property
    def server(self) -> ServerSettings:
        return ServerSettings(
            host=self.host,
            port=self.port,
            debug=self.debug,
            max_processing_seconds=self.max_processing_seconds,
        )

    @computed_field
    @property
    def r2_storage(self) -> R2Config:
        return R2Config(
            account_id=self.cloudflare_account_id,
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
            bucket_name=self.r2_bucket_name,
            public_domain=self.r2_public_domain,
        )

    @computed_field
    @property
    def r2_storage_enabled(self) -> bool:
        return bool(
            self.cloudflare_account_id
            and self.r2_access_key_id
            and self.r2_secret_access_key
            and self.r2_public_domain
        )

    @computed_field
    @property
    def redis_config(self) -> RedisConfig:
        return RedisConfig(
            url=self.redis_url,
            channel_prefix=self.job_channel_prefix,
            record_ttl=self.record_ttl_seconds,
        )

    @computed_field
    @property
    def redis_enabled(self) -> bool:
        return bool(self.redis_url)

    def validate_settings(self) -> None:
        """Validate configuration values"""
        if self.poll_interval_seconds <= 0:
            raise ValueError("POLL_INTERVAL_SECONDS must be positive")

        if self.max_wait_seconds <= 0:
            raise ValueError("MAX_WAIT_SECONDS must be positive")

        if self.push_head_start_seconds < 0:
            raise ValueError("PUSH_HEAD_START_SECONDS cannot be negative")

        if self.push_head_start_seconds >= self.max_wait_seconds:
            raise ValueError("PUSH_HEAD_START_SECONDS must be shorter than MAX_WAIT_SECONDS")

        if self.webhook_secret and len(self.webhook_secret) < 32:
            raise ValueError("WEBHOOK_SECRET must be at least 32 characters for security")
