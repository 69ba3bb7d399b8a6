from __future__ import annotations

import logging
from urllib.parse import urlparse

from postflight.config import ConfigError, RunEnvironment
from postflight.git_ops import GitWorkspace
from postflight.github_gateway import GitHubApiError, GitHubGateway
from postflight.models import TokenOwner, TriggerContext
from postflight.observability import log_event, log_warning_event
from postflight.shell import CommandError


LOGGER = logging.getLogger("postflight.auth")

DEFAULT_TOKEN_OWNER = TokenOwner(login="github-actions[bot]", id=41898282, type="Bot")


def resolve_token_owner(gateway: GitHubGateway, *, uses_default_token: bool) -> TokenOwner:
    if uses_default_token:
        log_event(LOGGER, "token_owner_resolved", login=DEFAULT_TOKEN_OWNER.login, source="default")
        return DEFAULT_TOKEN_OWNER

    try:
        try:
            owner = gateway.get_authenticated_user()
            source = "user"
        except GitHubApiError as exc:
            # Installation tokens cannot read /user; GraphQL still answers for the app bot.
            if exc.status_code != 403:
                raise
            owner = gateway.get_viewer()
            source = "graphql_viewer"
    except GitHubApiError as exc:
        log_warning_event(
            LOGGER,
            "token_owner_lookup_failed",
            status=exc.status_code,
            error=str(exc),
        )
        raise ConfigError(
            "❌ Failed to determine the identity behind the provided token. This could be due to:\n"
            "• The token is invalid or expired\n"
            "• The token lacks permission to read its own user profile\n"
            "• A network issue while contacting GitHub\n\n"
            f"Original error: {exc}"
        ) from exc

    log_event(LOGGER, "token_owner_resolved", login=owner.login, type=owner.type, source=source)
    return owner


def noreply_email(owner: TokenOwner, server_url: str) -> str:
    host = urlparse(server_url).hostname or "github.com"
    return f"{owner.id}+{owner.login}@users.noreply.{host}"


def authenticated_remote_url(server_url: str, repository_full_name: str, token: str) -> str:
    host = urlparse(server_url).netloc or "github.com"
    return f"https://x-access-token:{token}@{host}/{repository_full_name}.git"


class GitAuthError(RuntimeError):
    """Git identity or remote configuration could not be applied."""


def configure_git_identity(
    workspace: GitWorkspace,
    context: TriggerContext,
    environment: RunEnvironment,
) -> None:
    owner = context.token_owner
    if owner.type == "Bot":
        name = owner.login
        email = noreply_email(owner, environment.server_url)
    else:
        name = context.actor or owner.login
        email = context.actor_email or noreply_email(owner, environment.server_url)

    try:
        workspace.configure_identity(name, email)
    except (CommandError, OSError) as exc:
        raise GitAuthError(
            "❌ Failed to configure git user credentials. This could be due to:\n"
            "• Git is not installed or not in PATH\n"
            "• Insufficient permissions to modify git config\n"
            f"Original error: {exc}"
        ) from exc

    token = environment.override_token
    if token is None:
        # actions/checkout already wired the default token into the remote.
        log_event(LOGGER, "git_auth_configured", owner_type=owner.type, custom_token=False)
        return

    workspace.clear_auth_header(environment.server_url)
    try:
        workspace.set_remote_url(
            authenticated_remote_url(environment.server_url, context.repository.full_name, token)
        )
    except (CommandError, OSError) as exc:
        raise GitAuthError(
            "❌ Failed to configure git remote URL for authentication. This could be due to:\n"
            "• Git remote 'origin' does not exist\n"
            "• Insufficient permissions to modify git config\n"
            "• Invalid repository URL format\n"
            f"Original error: {exc}"
        ) from exc
    log_event(LOGGER, "git_auth_configured", owner_type=owner.type, custom_token=True)
