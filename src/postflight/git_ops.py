from __future__ import annotations

from pathlib import Path
import logging

from postflight.observability import log_event, log_warning_event
from postflight.shell import CommandError, run, succeeds


LOGGER = logging.getLogger("postflight.git_ops")


class RepositoryProbe:
    """Read-only questions about the checkout. Indeterminate answers are False."""

    def __init__(self, repo_dir: Path) -> None:
        self.repo_dir = repo_dir

    def has_working_tree_changes(self) -> bool:
        try:
            status = run(["git", "-C", str(self.repo_dir), "status", "--porcelain"])
        except (CommandError, OSError) as exc:
            log_warning_event(
                LOGGER,
                "git_status_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        changed = bool(status.strip())
        log_event(LOGGER, "git_working_tree_probed", changed=changed)
        return changed

    def has_unpushed_commits(self, is_new_branch: bool, base_branch: str) -> bool:
        try:
            if is_new_branch:
                commit_range = f"origin/{base_branch}..HEAD"
            else:
                if not succeeds(
                    ["git", "-C", str(self.repo_dir), "rev-parse", "--abbrev-ref", "@{u}"]
                ):
                    log_event(LOGGER, "git_upstream_missing")
                    return False
                commit_range = "@{u}..HEAD"
            commits = run(["git", "-C", str(self.repo_dir), "log", commit_range, "--oneline"])
        except (CommandError, OSError) as exc:
            log_warning_event(
                LOGGER,
                "git_unpushed_probe_failed",
                is_new_branch=is_new_branch,
                base_branch=base_branch,
                error_type=type(exc).__name__,
            )
            return False
        unpushed = bool(commits.strip())
        log_event(
            LOGGER,
            "git_unpushed_probed",
            commit_range=commit_range,
            unpushed=unpushed,
        )
        return unpushed


class GitWorkspace:
    def __init__(self, repo_dir: Path) -> None:
        self.repo_dir = repo_dir

    def fetch_branch(self, branch: str, *, depth: int | None) -> None:
        log_event(LOGGER, "git_fetch_branch", branch=branch, depth=depth)
        argv = ["git", "-C", str(self.repo_dir), "fetch", "origin"]
        if depth is not None:
            argv.append(f"--depth={depth}")
        argv.append(f"+{branch}:refs/remotes/origin/{branch}")
        run(argv)

    def checkout_reset(self, branch: str) -> None:
        log_event(LOGGER, "git_checkout_reset", branch=branch)
        run(["git", "-C", str(self.repo_dir), "checkout", "-B", branch, f"origin/{branch}"])

    def checkout_new_branch(self, branch: str, base_branch: str) -> None:
        log_event(LOGGER, "git_checkout_new_branch", branch=branch, base_branch=base_branch)
        run(["git", "-C", str(self.repo_dir), "checkout", "-b", branch, f"origin/{base_branch}"])

    def configure_identity(self, name: str, email: str) -> None:
        log_event(LOGGER, "git_identity_configured", name=name)
        run(["git", "-C", str(self.repo_dir), "config", "user.name", name])
        run(["git", "-C", str(self.repo_dir), "config", "user.email", email])

    def set_remote_url(self, url: str) -> None:
        # The URL embeds a token; never log or echo it.
        argv = ["git", "-C", str(self.repo_dir), "remote", "set-url", "origin"]
        if not succeeds([*argv, url]):
            raise CommandError([*argv, "<redacted>"], 1, "", "")
        log_event(LOGGER, "git_remote_set")

    def clear_auth_header(self, server_url: str) -> bool:
        cleared = succeeds(
            [
                "git",
                "-C",
                str(self.repo_dir),
                "config",
                "--unset-all",
                f"http.{server_url}/.extraheader",
            ]
        )
        log_event(LOGGER, "git_auth_header_cleared", cleared=cleared)
        return cleared
