from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://collabtodo:collabtodo@db:5432/collabtodo"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  cookie_secure: bool = False
  cookie_domain: str | None = None
  session_ttl_hours: int = 24

  rate_limit_login_ip_per_minute: int = 60
  rate_limit_login_email_per_minute: int = 20
  rate_limit_register_ip_per_minute: int = 20

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api,testserver"
  redis_url: str | None = None

  background_jobs_enabled: bool = True
  live_heartbeat_timeout_seconds: float = 60.0
  server_stats_interval_seconds: float = 300.0
  notification_purge_interval_seconds: float = 3600.0
  task_tombstone_retention_days: int = 30
  task_purge_time_utc: str = "01:00"  # HH:MM

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()
