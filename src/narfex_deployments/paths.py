"""Path management utilities for narfex-deployments library."""

from pathlib import Path
from typing import Optional, Union


def get_default_state_dir() -> Path:
    """
    Get default state directory (current working directory).

    Returns:
        Path to ./.narfex-deployments
    """
    return Path.cwd() / ".narfex-deployments"


def get_state_paths(state_root: Optional[Union[Path, str]] = None) -> tuple[Path, Path]:
    """
    Get state directory paths.

    Args:
        state_root: Custom state directory (defaults to ./.narfex-deployments)

    Returns:
        Tuple of (address_book_dir, manifests_dir)
    """
    if state_root is None:
        state_root = get_default_state_dir()
    else:
        state_root = Path(state_root).absolute()

    address_book_dir = state_root / "address_book"
    manifests_dir = state_root / "manifests"

    return (address_book_dir, manifests_dir)


def get_manifest_path(network: str, state_root: Optional[Union[Path, str]] = None) -> Path:
    """Path of the manifest written for a network."""
    return get_state_paths(state_root)[1] / f"{network}.json"
