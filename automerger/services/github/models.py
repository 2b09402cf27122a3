from dataclasses import dataclass, field
from enum import Enum

from automerger.conf.automerge import MergeMethod, MergeOn
from automerger.services.retry import RetryPolicy


class StatusState(str, Enum):
    """State of a legacy commit status, also used for normalized checks."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    ERROR = "error"


class CheckRunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    WAITING = "waiting"
    REQUESTED = "requested"
    PENDING = "pending"


class CheckRunConclusion(str, Enum):
    SUCCESS = "success"
    NEUTRAL = "neutral"
    SKIPPED = "skipped"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    ACTION_REQUIRED = "action_required"
    STALE = "stale"


class ReviewState(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"
    DISMISSED = "dismissed"
    PENDING = "pending"


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class Label:
    name: str


@dataclass
class Review:
    """A pull request review and the logins of its authors."""

    state: ReviewState
    by: list[str] = field(default_factory=list)


@dataclass
class Comment:
    body: str | None
    id: int | None = None
    author: str | None = None


@dataclass
class Commit:
    message: str | None
    sha: str | None = None


@dataclass
class Status:
    """Legacy commit status reported through the statuses API."""

    context: str
    state: StatusState
    target_url: str | None = None
    description: str | None = None


@dataclass
class CheckRun:
    name: str
    check_run_id: int
    status: CheckRunStatus
    conclusion: CheckRunConclusion | None = None
    html_url: str | None = None
    output_title: str | None = None
    details_url: str | None = None


@dataclass
class CheckSuite:
    app_slug: str | None
    check_runs: list[CheckRun] = field(default_factory=list)


@dataclass
class Head:
    sha: str
    statuses: list[Status] = field(default_factory=list)
    check_suites: list[CheckSuite] = field(default_factory=list)


@dataclass
class Check:
    """A commit status or current check run normalized to one shape."""

    name: str
    state: StatusState
    description: str | None = None
    url: str | None = None
    details_url: str | None = None
    app: str | None = None  # app slug of the check suite, None for statuses

    def matches(self, name: str) -> bool:
        """Return True if ``name`` refers to this check, bare or as ``app/name``."""
        if self.name == name:
            return True
        return self.app is not None and f"{self.app}/{self.name}" == name


@dataclass
class PullRequest:
    """Snapshot of a pull request as seen at the time of the event."""

    repository: Repository
    number: int
    url: str
    state: str
    author: str
    title: str = ""
    body: str | None = None
    base_branch_name: str = "main"
    head: Head | None = None
    labels: list[Label] = field(default_factory=list)
    reviews: list[Review] = field(default_factory=list)
    comments: list[Comment] = field(default_factory=list)
    commits: list[Commit] = field(default_factory=list)

    @property
    def slug(self) -> str:
        return f"{self.repository.full_name}#{self.number}"

    @property
    def link(self) -> str:
        """Markdown link to the pull request."""
        return f"[{self.slug}]({self.url})"

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


@dataclass(frozen=True)
class AutoMergeConfiguration:
    """Per-invocation auto-merge configuration."""

    merge_on: MergeOn = MergeOn.ON_APPROVE
    merge_method: MergeMethod = MergeMethod.MERGE
    authors: list[str] = field(default_factory=list)
    checks: list[str] = field(default_factory=list)
    dry_run: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    marker: str = "<!-- [automerger:auto-merge-comment] -->"
    configuration_url: str | None = None
