"""The capability a client needs to be a hot-reload target."""

from __future__ import annotations

from typing import Mapping, Protocol, Tuple, runtime_checkable

from hcloud_ccm.hotreload.counters import APIFamily


@runtime_checkable
class Reloadable(Protocol):
    """A client that reconfigures itself in place from credential files.

    Attributes:
        api_family: Counter bucket bumped on a successful change.
        credential_files: File names read from the credentials directory.
    """

    api_family: APIFamily
    credential_files: Tuple[str, ...]

    def apply(self, material: Mapping[str, bytes]) -> bool:
        """Swap in new credentials read from ``credential_files``.

        Files missing from the directory are missing from ``material``.

        Returns:
            True if the active credentials changed, False if ``material``
            matched them already.

        Raises:
            CredentialValidationError: If ``material`` is invalid. The active
                credentials are left untouched.
        """
        ...


__all__ = ["Reloadable"]
