from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .automerge import AutoMergeSettings
from .github import GitHubSettings


class WebSettings(BaseSettings):
    """Webhook receiver configuration settings."""

    webhook_secret: SecretStr | None = Field(
        default=None,
        description="Secret used to verify X-Hub-Signature-256 on incoming webhooks (unset disables verification)",
    )

    webhook_process_in_background: bool = Field(
        default=True,
        description="Acknowledge webhooks immediately and evaluate pull requests in a background task",
    )


class Settings(AutoMergeSettings, GitHubSettings, WebSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    project_name: str = "automerger"
    debug: bool = False
