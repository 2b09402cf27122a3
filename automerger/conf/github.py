from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


class GitHubSettings(BaseSettings):
    """GitHub API configuration and authentication settings."""

    # Personal Access Token or installation token authentication
    github_token: SecretStr | None = Field(
        default=None,
        description="GitHub token used for API authentication",
    )

    github_api_url: str = Field(
        default="https://api.github.com",
        description="Base URL for the GitHub REST API (change for GitHub Enterprise Server)",
    )

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the API URL so paths can be appended directly."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_api_url must be an http(s) URL")
        return v.rstrip("/")

    # Disable validation by default - only validate when actually using GitHub features
    github_validate_on_init: bool = Field(
        default=False,
        description="Whether to validate GitHub auth config on initialization",
    )

    @model_validator(mode="after")
    def validate_auth_config(self) -> "GitHubSettings":
        """Validate that a token is available when validation is requested."""
        if not self.github_validate_on_init:
            return self

        if self.github_token is None:
            raise ValueError("github_token is required to talk to the GitHub API")
        return self
