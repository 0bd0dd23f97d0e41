"""Credential resolution as an ordered chain of providers.

A provider is any callable returning a complete ``Credential`` or ``None``.
``CredentialResolver`` tries them in priority order and the first complete
result wins.  Adding a source (a keyring, a secret manager) means appending
a provider, not branching inside the resolver.

Nothing in this module writes credentials anywhere, and log records only
name the source and identity.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Sequence
from pathlib import Path

import yaml
from pydantic import ValidationError

from histsync.config_loader import load_hierarchical_config
from histsync.config_schema import build_config

from .errors import CredentialError
from .models import Credential, CredentialSource

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[], "Credential | None"]

ENV_USERNAME = "GIT_USERNAME"
ENV_TOKEN = "GIT_TOKEN"
ENV_REPO = "GIT_REPO"


def _complete(
    username: str | None,
    token: str | None,
    repo: str | None,
    source: CredentialSource,
) -> Credential | None:
    values = [(v or "").strip() for v in (username, token, repo)]
    if not all(values):
        return None
    identity, secret, locator = values
    return Credential(
        identity=identity, secret=secret, locator=locator, source=source
    )


def environment_provider() -> Credential | None:
    """Read ``GIT_USERNAME``/``GIT_TOKEN``/``GIT_REPO``; all three required."""
    credential = _complete(
        os.getenv(ENV_USERNAME),
        os.getenv(ENV_TOKEN),
        os.getenv(ENV_REPO),
        CredentialSource.ENVIRONMENT,
    )
    if credential is None and any(
        os.getenv(k) for k in (ENV_USERNAME, ENV_TOKEN, ENV_REPO)
    ):
        logger.debug(
            "Ignoring partial credentials in environment; "
            "%s, %s and %s must all be set",
            ENV_USERNAME,
            ENV_TOKEN,
            ENV_REPO,
        )
    return credential


def config_file_provider(path: Path | None = None) -> CredentialProvider:
    """Build a provider reading the ``git`` section of the YAML config.

    Args:
        path: Explicit config file.  ``None`` discovers the well-known
            locations under the home directory.

    The returned provider yields ``None`` when no file exists or the section
    is incomplete, and raises ``CredentialError`` when a file exists but
    cannot be parsed.
    """

    def _provider() -> Credential | None:
        if path is not None and not path.exists():
            logger.debug("Config file %s does not exist", path)
            return None
        try:
            raw = load_hierarchical_config(path)
            git = build_config(raw).git
        except (OSError, yaml.YAMLError, ValueError, ValidationError) as exc:
            raise CredentialError(
                f"Cannot read credentials from config file: {exc}"
            ) from exc
        return _complete(
            git.username,
            git.token,
            git.repo,
            CredentialSource.CONFIG_FILE,
        )

    return _provider


class CredentialResolver:
    """Try credential providers in order; the first complete one wins.

    Args:
        providers: Callables returning ``Credential | None``.
    """

    def __init__(self, providers: Sequence[CredentialProvider]) -> None:
        self.providers = list(providers)

    def resolve(self) -> Credential:
        """Return the first complete credential.

        Raises:
            CredentialError: If no provider yields a complete triple.
        """
        for provider in self.providers:
            credential = provider()
            if credential is not None:
                logger.info(
                    "Using credentials for '%s' from %s",
                    credential.identity,
                    credential.source.value,
                )
                return credential
        raise CredentialError(
            "No complete git credentials found. Set GIT_USERNAME, GIT_TOKEN "
            "and GIT_REPO, or add git.username, git.token and git.repo to "
            "the config file."
        )


def default_resolver(config_path: Path | None = None) -> CredentialResolver:
    """Environment first, then the YAML config file."""
    return CredentialResolver(
        [environment_provider, config_file_provider(config_path)]
    )
