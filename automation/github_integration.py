"""
GitHub integration for the ephemeral environment action.

Keeps a single preview comment per pull request up to date: posted when
the environment comes up, edited on every redeploy, and rewritten once
the environment is deleted.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from functools import cached_property

from github import Auth, Github, GithubException

from automation.constants import (
    BOT_USER_TYPE,
    COMMENT_MARKER,
    GITHUB_ACTIONS_BOT_LOGIN,
    PREVIEW_READY_MARKER,
)
from automation.exceptions import GitHubError
from automation.logger import get_logger

logger = get_logger(__name__)


@contextmanager
def _github_errors(failed: str, unexpected: str) -> Iterator[None]:
    """Re-raise anything PyGithub throws as GitHubError."""
    try:
        yield
    except GithubException as e:
        raise GitHubError(f"Failed to {failed}: {e}") from e
    except Exception as e:
        raise GitHubError(f"Unexpected error {unexpected}: {e}") from e


def is_preview_comment(body: str | None) -> bool:
    # Comments posted before the hidden marker existed only carry the header
    body = body or ""
    return COMMENT_MARKER in body or PREVIEW_READY_MARKER in body


class GithubClient:
    """
    Preview comment operations on one repository.
    """

    def __init__(self, token: str, repo_name: str):
        """
        Args:
            token: GitHub token, usually the workflow's GITHUB_TOKEN
            repo_name: Repository in format "owner/repo"
        """
        try:
            self.client = Github(auth=Auth.Token(token))
            self.repo = self.client.get_repo(repo_name)
        except Exception as e:
            logger.critical(f"Failed to initialize GitHub client: {e}")
            raise
        logger.info(f"GitHub client initialized for {repo_name}")

    @cached_property
    def login(self) -> str | None:
        """
        Login the token comments as, or None when it cannot be looked up.

        Workflow and app installation tokens may not read /user. Their
        comments are recognised by the Bot account type instead.
        """
        try:
            return self.client.get_user().login
        except GithubException as e:
            logger.debug(f"Could not resolve the token's login: {e}")
            return None

    def is_own_comment(self, comment) -> bool:
        """Whether a comment was written by the identity this action posts as."""
        user = comment.user
        if user is None:
            return False
        if user.type == BOT_USER_TYPE or user.login == GITHUB_ACTIONS_BOT_LOGIN:
            return True
        return self.login is not None and user.login == self.login

    def post_comment(self, pr_number: int, message: str) -> int:
        """
        Post a new comment to a PR.

        Returns:
            ID of the new comment

        Raises:
            GitHubError: If comment posting fails
        """
        where = f"PR #{pr_number}"
        with _github_errors(f"post comment to {where}", f"posting comment to {where}"):
            comment = self.repo.get_pull(pr_number).create_issue_comment(message)

        logger.info(
            f"Posted comment {comment.id} to {where}",
            extra={"pr_number": pr_number, "comment_id": comment.id},
        )
        return comment.id

    def find_bot_comment(self, pr_number: int) -> int | None:
        """
        Find the preview comment this action left on the PR.

        Only comments by this action's identity count, so a user quoting
        the marker or the ready header cannot take over the comment.

        Returns:
            Comment ID if found, None if not found

        Raises:
            GitHubError: If listing comments fails
        """
        where = f"PR #{pr_number}"
        with _github_errors(f"search for bot comment on {where}", f"finding comment on {where}"):
            comments = self.repo.get_pull(pr_number).get_issue_comments()
            comment_id = next(
                (
                    c.id
                    for c in comments
                    if is_preview_comment(c.body) and self.is_own_comment(c)
                ),
                None,
            )

        if comment_id is None:
            logger.info(f"No existing bot comment found on {where}")
        else:
            logger.info(
                f"Found existing bot comment {comment_id} on {where}",
                extra={"pr_number": pr_number, "comment_id": comment_id},
            )
        return comment_id

    def update_comment(self, pr_number: int, comment_id: int, message: str) -> None:
        """
        Replace the body of an existing comment.

        Raises:
            GitHubError: If the update fails
        """
        where = f"comment {comment_id} on PR #{pr_number}"
        with _github_errors(f"update {where}", f"updating {where}"):
            self.repo.get_pull(pr_number).get_issue_comment(comment_id).edit(message)

        logger.info(
            f"Updated {where}", extra={"comment_id": comment_id, "pr_number": pr_number}
        )

    def upsert_comment(self, pr_number: int, message: str) -> int:
        """
        Edit the existing preview comment, or post one if there is none.

        Returns:
            ID of the comment that now holds the message

        Raises:
            GitHubError: If any API call fails
        """
        comment_id = self.find_bot_comment(pr_number)

        if comment_id is None:
            return self.post_comment(pr_number, message)

        self.update_comment(pr_number, comment_id, message)
        return comment_id
