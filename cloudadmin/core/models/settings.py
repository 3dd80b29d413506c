"""
Settings models — typed view of cloudadmin.yml.

Every field has a default so a missing config file yields a working
setup.  Timeouts are in seconds.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class EngineSettings(BaseModel):
    """Command execution engine limits and retry policy."""

    interpreter: str = "pwsh"
    max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.05, ge=0)
    max_command_name_length: int = Field(default=200, ge=1)
    max_parameter_count: int = Field(default=50, ge=0)
    execution_policy_bypass: bool = False
    connect_command: str = "Connect-ExchangeOnline"
    module_probe_timeout: float = Field(default=30.0, gt=0)


class ResolverSettings(BaseModel):
    """Dependency resolver probes and installs."""

    module_host: str = "pwsh"
    probe_timeout: float = Field(default=30.0, gt=0)
    install_timeout: float = Field(default=180.0, gt=0)
    runtime_timeout: float = Field(default=30.0, gt=0)
    min_runtime_major: int = 7
    stop_on_install_error: bool = False


class AuthSettings(BaseModel):
    """Static identity and tokens (headless use and tests)."""

    user_principal_name: str | None = None
    tokens: dict[str, str] = Field(default_factory=dict)


class Settings(BaseModel):
    """Root of cloudadmin.yml."""

    engine: EngineSettings = Field(default_factory=EngineSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
