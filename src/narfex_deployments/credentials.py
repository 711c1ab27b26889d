"""Signing credential resolution for narfex-deployments library."""

import os
from pathlib import Path
from typing import Mapping, Optional

from .exceptions import CredentialError


def resolve_credential(
    reference: Optional[str], environ: Optional[Mapping[str, str]] = None
) -> str:
    """
    Resolve a credential reference to the secret it points at.

    Supported references:
    - env:NAME      value of environment variable NAME
    - file:PATH     contents of a file (stripped)

    Args:
        reference: Credential reference from a network profile
        environ: Environment mapping (defaults to os.environ)

    Returns:
        The secret string

    Raises:
        CredentialError: If the reference is missing, unsupported or empty
    """
    if not reference:
        raise CredentialError("Network profile has no credential reference")

    if environ is None:
        environ = os.environ

    scheme, _, target = reference.partition(":")
    if not target:
        raise CredentialError(f"Malformed credential reference '{reference}'")

    if scheme == "env":
        secret = environ.get(target)
        if not secret:
            raise CredentialError(f"Environment variable '{target}' is not set")
    elif scheme == "file":
        try:
            secret = Path(target).expanduser().read_text().strip()
        except OSError as e:
            raise CredentialError(f"Cannot read credential file '{target}': {e}") from e
        if not secret:
            raise CredentialError(f"Credential file '{target}' is empty")
    else:
        raise CredentialError(f"Unsupported credential scheme '{scheme}'")

    return secret
