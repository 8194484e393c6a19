"""Credential rotation for the long-lived Fitbit OAuth token.

The token lives in a versioned secret.  Rotation is a three-step protocol:

1. Write the new value as a new version.  Nothing is destroyed unless this
   succeeds, so a failed write leaves the old version as the only truth.
2. List every non-destroyed version.
3. Destroy every listed version except the one just written, one at a time.
   The first destroy failure stops the sweep.  The new version stays live;
   an interrupted rotation leaves old and new versions side by side, and the
   newest one is what ``get()`` returns.

The version just written is matched by the id the store returned for it, so
a listing race can never destroy it.
"""

from __future__ import annotations

import asyncio
import logging

from src.ingest.base import OAuthTokens
from src.services.secret_store import SecretNotFoundError, SecretStore

logger = logging.getLogger("scalesync.ingest.credentials")


class CredentialMissingError(LookupError):
    """Raised when a credential has no live version.  There is no fallback."""


class RotationError(RuntimeError):
    """Raised when the new version could not be written.  Nothing was destroyed."""


class RotationCleanupError(RuntimeError):
    """Raised when an old version could not be destroyed.

    The new version was written and is live.

    Attributes:
        new_version: Id of the version written by this rotation.
        remaining:   Old version ids that were not destroyed.
    """

    def __init__(self, new_version: str, remaining: list[str], message: str) -> None:
        super().__init__(message)
        self.new_version = new_version
        self.remaining = remaining


class CredentialRotator:
    """Read and rotate one named credential.

    Rotations are serialized with a lock so two refreshes in flight cannot
    destroy each other's versions.
    """

    def __init__(self, secret_store: SecretStore, name: str) -> None:
        self._secrets = secret_store
        self._name = name
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self._name

    async def get(self) -> bytes:
        """Return the current credential value.

        Raises:
            CredentialMissingError: If no live version exists.
        """
        try:
            return await self._secrets.get_latest_version(self._name)
        except SecretNotFoundError as exc:
            raise CredentialMissingError(f"Credential {self._name!r} has no live version") from exc

    async def rotate(self, new_value: bytes) -> str:
        """Publish ``new_value`` and retire every other live version.

        Returns:
            The id of the new version.

        Raises:
            RotationError:        The new version could not be written.
            RotationCleanupError: An old version could not be listed or destroyed.
        """
        async with self._lock:
            try:
                new_version = await self._secrets.add_version(self._name, new_value)
            except Exception as exc:
                raise RotationError(f"Could not write new version of {self._name!r}: {exc}") from exc

            logger.info("Rotated %s to version %s", self._name, new_version)

            try:
                live = await self._secrets.list_versions(self._name)
            except Exception as exc:
                raise RotationCleanupError(
                    new_version, [], f"Could not list versions of {self._name!r}: {exc}"
                ) from exc

            old_versions = [v for v in live if v != new_version]
            for i, version in enumerate(old_versions):
                try:
                    await self._secrets.destroy_version(self._name, version)
                except Exception as exc:
                    remaining = old_versions[i:]
                    logger.warning(
                        "Destroying %s version %s failed (%d old version(s) left live): %s",
                        self._name, version, len(remaining), exc,
                    )
                    raise RotationCleanupError(
                        new_version,
                        remaining,
                        f"Could not destroy version {version} of {self._name!r}: {exc}",
                    ) from exc

            logger.info("Destroyed %d old version(s) of %s", len(old_versions), self._name)
            return new_version


class TokenManager:
    """OAuth token persistence on top of a CredentialRotator."""

    def __init__(self, rotator: CredentialRotator) -> None:
        self._rotator = rotator

    async def load(self) -> OAuthTokens:
        """Return the stored OAuth tokens.

        Raises:
            CredentialMissingError: If the token was never provisioned.
        """
        return OAuthTokens.from_json(await self._rotator.get())

    async def store(self, tokens: OAuthTokens) -> None:
        """Persist refreshed tokens via rotation.

        A cleanup failure is logged and not raised: the new token is live and
        the leftover versions are retired by the next rotation.

        Raises:
            RotationError: If the new token could not be written.
        """
        try:
            await self._rotator.rotate(tokens.to_json())
        except RotationCleanupError as exc:
            logger.warning(
                "Token %s stored as %s but cleanup is incomplete: %s",
                self._rotator.name, exc.new_version, exc,
            )
