from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://cockpit:cockpit@db:5432/cockpit"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2025-01-20+rbac-alerts"
  build_sha: str = "dev"
  environment: str = "development"  # development | production
  log_level: str = "INFO"

  cookie_secure: bool = False
  cookie_domain: str | None = None

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api,web"
  public_base_url: str = "http://localhost:3000"

  smtp_host: str | None = None
  smtp_port: int = 587
  smtp_username: str | None = None
  smtp_password: str | None = None
  smtp_from: str = "noreply@voicockpit.com"
  smtp_starttls: bool = True
  dev_email_capture: bool = False

  login_lockout_threshold: int = 5
  login_lockout_minutes: int = 30
  password_reset_ttl_minutes: int = 60
  verification_ttl_hours: int = 24

  rate_limit_login_ip_per_minute: int = 60
  rate_limit_password_reset_ip_per_minute: int = 10
  rate_limit_password_reset_email_per_minute: int = 5
  redis_url: str | None = None

  alert_timezone: str = "UTC"
  alert_scan_enabled: bool = False
  alert_scan_interval_seconds: int = 3600

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]

  def smtp_configured(self) -> bool:
    return bool((self.smtp_host or "").strip())


settings = Settings()
