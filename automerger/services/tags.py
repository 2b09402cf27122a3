"""Detection of auto-merge labels and inline markers on pull requests."""

from logging import getLogger

from automerger.conf.automerge import MergeMethod, MergeOn

from .github.models import PullRequest

logger = getLogger(__name__)

AUTO_MERGE_LABEL = f"auto-merge:{MergeOn.ON_APPROVE.value}"
AUTO_MERGE_CHECK_SUCCESS_LABEL = f"auto-merge:{MergeOn.ON_CHECK_SUCCESS.value}"
AUTO_MERGE_BPR_SUCCESS_LABEL = f"auto-merge:{MergeOn.ON_BPR_SUCCESS.value}"
AUTO_MERGE_TAG = f"[{AUTO_MERGE_LABEL}]"
AUTO_MERGE_CHECK_SUCCESS_TAG = f"[{AUTO_MERGE_CHECK_SUCCESS_LABEL}]"
AUTO_MERGE_BPR_SUCCESS_TAG = f"[{AUTO_MERGE_BPR_SUCCESS_LABEL}]"

# (label, inline marker) per policy
AUTO_MERGE_POLICIES: dict[MergeOn, tuple[str, str]] = {
    MergeOn.ON_APPROVE: (AUTO_MERGE_LABEL, AUTO_MERGE_TAG),
    MergeOn.ON_CHECK_SUCCESS: (AUTO_MERGE_CHECK_SUCCESS_LABEL, AUTO_MERGE_CHECK_SUCCESS_TAG),
    MergeOn.ON_BPR_SUCCESS: (AUTO_MERGE_BPR_SUCCESS_LABEL, AUTO_MERGE_BPR_SUCCESS_TAG),
}

AUTO_MERGE_POLICY_DESCRIPTIONS: dict[MergeOn, str] = {
    MergeOn.ON_APPROVE: "Auto-merge on review approvals",
    MergeOn.ON_CHECK_SUCCESS: "Auto-merge on successful checks",
    MergeOn.ON_BPR_SUCCESS: "Auto-merge on passing branch protection rule",
}

AUTO_MERGE_METHOD_LABEL = "auto-merge-method:"
MERGE_METHODS: tuple[MergeMethod, ...] = (MergeMethod.MERGE, MergeMethod.REBASE, MergeMethod.SQUASH)
MERGE_METHOD_DESCRIPTIONS: dict[MergeMethod, str] = {
    MergeMethod.MERGE: "Auto-merge with merge commit",
    MergeMethod.REBASE: "Auto-merge with rebase and merge",
    MergeMethod.SQUASH: "Auto-merge with squash and merge",
}


def is_tagged(text: str | None, tag: str) -> bool:
    return text is not None and tag in text


def is_pr_tagged(pr: PullRequest, label: str = AUTO_MERGE_LABEL, tag: str = AUTO_MERGE_TAG) -> bool:
    """Check whether a pull request opted into a policy.

    Sources are checked in order of precedence: labels, then title and body,
    then comments, then commit messages.

    Args:
        pr: Pull request snapshot
        label: Label name that enables the policy
        tag: Inline marker that enables the policy

    Returns:
        True if any source carries the label or marker
    """
    if any(existing.name == label for existing in pr.labels):
        return True

    if is_tagged(pr.title, tag) or is_tagged(pr.body, tag):
        return True

    if any(is_tagged(comment.body, tag) for comment in pr.comments):
        return True

    return any(is_tagged(commit.message, tag) for commit in pr.commits)


def is_pr_tagged_for(pr: PullRequest, policy: MergeOn) -> bool:
    label, tag = AUTO_MERGE_POLICIES[policy]
    return is_pr_tagged(pr, label, tag)


def is_pr_auto_merge_enabled(pr: PullRequest) -> bool:
    """Return True if the pull request is tagged for any auto-merge policy."""
    return any(is_pr_tagged_for(pr, policy) for policy in AUTO_MERGE_POLICIES)


def merge_method_label(method: MergeMethod) -> str:
    return f"{AUTO_MERGE_METHOD_LABEL}{method.value}"


def requested_merge_method(pr: PullRequest) -> MergeMethod | None:
    """Return the merge method requested through an ``auto-merge-method:`` label.

    Only the first method label is considered; unknown values yield None.
    """
    method_label = next((label for label in pr.labels if label.name.startswith(AUTO_MERGE_METHOD_LABEL)), None)
    if method_label is None:
        return None

    value = method_label.name.split(":", 1)[1].strip().lower()
    try:
        return MergeMethod(value)
    except ValueError:
        logger.debug(f"Ignoring unsupported merge method label '{method_label.name}' on {pr.slug}")
        return None
