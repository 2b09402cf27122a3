from enum import Enum
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

if TYPE_CHECKING:
    from automerger.services.github.models import AutoMergeConfiguration


class MergeOn(str, Enum):
    """Auto-merge policies a pull request can opt into."""

    ON_APPROVE = "on-approve"
    ON_CHECK_SUCCESS = "on-check-success"
    ON_BPR_SUCCESS = "on-bpr-success"


class MergeMethod(str, Enum):
    """Merge methods supported by the GitHub merge endpoint."""

    MERGE = "merge"
    REBASE = "rebase"
    SQUASH = "squash"


def _split_list(v: Any) -> Any:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


class AutoMergeSettings(BaseSettings):
    """Auto-merge policy settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    automerge_dry_run: bool = Field(
        default=True,
        description="Leave a preview comment instead of merging pull requests",
    )
    automerge_merge_on: MergeOn = Field(
        default=MergeOn.ON_APPROVE,
        description="Default policy applied when labelling newly opened pull requests",
    )
    automerge_merge_method: MergeMethod = Field(
        default=MergeMethod.MERGE,
        description="Default merge method when a pull request carries no method label",
    )
    automerge_authors: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Only auto-merge pull requests from these GitHub users or bots (comma separated, empty for all)",
    )
    automerge_checks: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Checks that must succeed before merging (comma separated, empty means all present checks)",
    )

    # Polling GitHub until it settles mergeability
    automerge_retry_attempts: int = 5
    automerge_retry_factor: float = 3.0
    automerge_retry_min_delay: float = 0.5  # seconds
    automerge_retry_max_delay: float = 5.0  # seconds

    automerge_comment_marker: str = Field(
        default="<!-- [automerger:auto-merge-comment] -->",
        description="Hidden marker used to find comments previously written by automerger",
    )
    automerge_configuration_url: str | None = Field(
        default=None,
        description="Link to the configuration shown in dry-run preview comments",
    )

    @field_validator("automerge_authors", "automerge_checks", mode="before")
    @classmethod
    def parse_list(cls, v: Any) -> Any:
        """Accept comma separated strings from the environment."""
        return _split_list(v)

    @field_validator("automerge_retry_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("automerge_retry_attempts must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_delays(self) -> "AutoMergeSettings":
        """Validate that the retry delays are usable."""
        if self.automerge_retry_min_delay < 0 or self.automerge_retry_max_delay < 0:
            raise ValueError("Retry delays must not be negative")
        if self.automerge_retry_min_delay > self.automerge_retry_max_delay:
            raise ValueError("automerge_retry_min_delay must not exceed automerge_retry_max_delay")
        return self

    def to_configuration(self, **overrides: Any) -> "AutoMergeConfiguration":
        """Build the per-invocation auto-merge configuration.

        Args:
            **overrides: Configuration fields to override (None values are ignored)

        Returns:
            AutoMergeConfiguration instance
        """
        from automerger.services.github.models import AutoMergeConfiguration
        from automerger.services.retry import RetryPolicy

        values: dict[str, Any] = {
            "merge_on": self.automerge_merge_on,
            "merge_method": self.automerge_merge_method,
            "authors": list(self.automerge_authors),
            "checks": list(self.automerge_checks),
            "dry_run": self.automerge_dry_run,
            "retry": RetryPolicy(
                attempts=self.automerge_retry_attempts,
                factor=self.automerge_retry_factor,
                min_delay=self.automerge_retry_min_delay,
                max_delay=self.automerge_retry_max_delay,
            ),
            "marker": self.automerge_comment_marker,
            "configuration_url": self.automerge_configuration_url,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return AutoMergeConfiguration(**values)
