"""
Markdown bodies for the preview comment and the job summary.
"""

from __future__ import annotations

from automation.constants import COMMENT_MARKER, PREVIEW_DELETED_MARKER, PREVIEW_READY_MARKER


def build_ready_comment(
    namespace: str, urls: dict[str, str], run_url: str | None = None
) -> str:
    """
    Build the comment posted once an environment is up.

    Args:
        namespace: Preview namespace (e.g. 'pr-42')
        urls: Service name to public URL, in display order
        run_url: Optional link to the workflow run that deployed it

    Returns:
        str: Comment markdown
    """
    service_links = [f"**{name.title()}:** {url}" for name, url in urls.items()]

    lines = [
        COMMENT_MARKER,
        PREVIEW_READY_MARKER,
        "",
        *service_links,
        "",
        f"Namespace: `{namespace}`",
    ]

    if run_url:
        lines.append(f"Deployed by [workflow run]({run_url})")

    lines += ["", "The environment will be automatically deleted when this PR is closed."]

    return "\n".join(lines)


def build_deleted_comment(namespace: str, run_url: str | None = None) -> str:
    lines = [
        COMMENT_MARKER,
        PREVIEW_DELETED_MARKER,
        "",
        f"Namespace `{namespace}` and all of its resources have been removed.",
    ]

    if run_url:
        lines.append(f"Deleted by [workflow run]({run_url})")

    return "\n".join(lines)


def build_summary(namespace: str, urls: dict[str, str]) -> str:
    """Build the job summary table written after a create."""
    lines = [f"### Preview environment `{namespace}`", ""]

    if not urls:
        lines.append("No services expose an ingress; use `kubectl port-forward` to reach them.")
        return "\n".join(lines) + "\n"

    lines += ["| Service | URL |", "| --- | --- |"]
    lines += [f"| {name} | {url} |" for name, url in urls.items()]
    return "\n".join(lines) + "\n"
