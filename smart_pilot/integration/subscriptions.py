"""Subscription store: index file, per-subscription profiles, refresh from source.

Layout under the pilot home directory::

    subscriptions.json        { active, subscriptions: [{name, url, updated_at}] }
    profiles/<name>.yaml      last normalized profile of each subscription

Normalizing a downloaded subscription into the engine's native format is
delegated to a pluggable ``normalizer``. The default accepts content that is
already a YAML mapping and rejects everything else with ``FormatError``.
When the active subscription is refreshed or selected, its profile is copied
over the engine config and the optional ``on_apply`` hook is awaited.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path

import httpx
import yaml
from pydantic import BaseModel, Field

from smart_pilot.middleware.error_handler import (
    ControlAPIError,
    FetchError,
    FormatError,
    SubscriptionExistsError,
    SubscriptionNotFoundError,
    TransientNetworkError,
)
from smart_pilot.proxy.types import SubscriptionRef

logger = logging.getLogger(__name__)

Normalizer = Callable[[str], str]
ApplyHook = Callable[[Path], Awaitable[None]]


class Subscription(BaseModel):
    """One stored subscription entry."""

    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    updated_at: datetime | None = None


class SubscriptionIndex(BaseModel):
    """Persistent index of all subscriptions."""

    active: str | None = None
    subscriptions: list[Subscription] = Field(default_factory=list)

    def find(self, name: str) -> Subscription | None:
        return next((s for s in self.subscriptions if s.name == name), None)


def yaml_mapping_normalizer(content: str) -> str:
    """Accept content that parses as a YAML mapping, reject anything else."""
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise FormatError(f"Subscription content is not valid YAML: {exc}") from exc
    if not isinstance(parsed, dict):
        raise FormatError("Subscription content is not an engine profile mapping")
    if "proxies" not in parsed and "proxy-groups" not in parsed:
        logger.warning("Subscription content has neither 'proxies' nor 'proxy-groups'")
    return content


class SubscriptionStore:
    """File-backed subscription store.

    Parameters
    ----------
    index_path:
        Location of ``subscriptions.json``.
    profiles_dir:
        Directory holding one ``<name>.yaml`` profile per subscription.
    engine_config_path:
        Engine config file the active profile is copied to.
    timeout_seconds:
        HTTP timeout when downloading a subscription (default 30).
    normalizer:
        Converts downloaded text into an engine profile; raises ``FormatError``.
    on_apply:
        Awaited with ``engine_config_path`` after the active profile changes.
    transport:
        Optional httpx transport override.
    """

    def __init__(
        self,
        index_path: Path,
        profiles_dir: Path,
        engine_config_path: Path,
        timeout_seconds: float = 30.0,
        normalizer: Normalizer = yaml_mapping_normalizer,
        on_apply: ApplyHook | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._index_path = index_path
        self._profiles_dir = profiles_dir
        self._engine_config_path = engine_config_path
        self._timeout_seconds = timeout_seconds
        self._normalizer = normalizer
        self._on_apply = on_apply
        self._transport = transport

    # ------------------------------------------------------------------
    # Index persistence
    # ------------------------------------------------------------------

    def _load(self) -> SubscriptionIndex:
        if not self._index_path.exists():
            return SubscriptionIndex()
        return SubscriptionIndex.model_validate_json(
            self._index_path.read_text(encoding="utf-8")
        )

    def _save(self, index: SubscriptionIndex) -> None:
        self._index_path.parent.mkdir(parents=True, exist_ok=True)
        self._index_path.write_text(index.model_dump_json(indent=2), encoding="utf-8")

    def profile_path(self, name: str) -> Path:
        return self._profiles_dir / f"{name}.yaml"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list(self) -> list[SubscriptionRef]:
        """All subscriptions in insertion order."""
        return [SubscriptionRef(name=s.name, source_url=s.url) for s in self._load().subscriptions]

    def entries(self) -> SubscriptionIndex:
        """Full index including the active name and update timestamps."""
        return self._load()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def add(self, name: str, url: str) -> None:
        """Download, normalize and store a new subscription.

        The first subscription added becomes the active one.
        """
        index = self._load()
        if index.find(name) is not None:
            raise SubscriptionExistsError(f"Subscription '{name}' already exists", name=name)

        profile = await self._download(name, url)
        self._write_profile(name, profile)

        index.subscriptions.append(
            Subscription(name=name, url=url, updated_at=datetime.now(timezone.utc))
        )
        if index.active is None:
            index.active = name
            self._save(index)
            await self._apply(name)
        else:
            self._save(index)
        logger.info("Subscription added", extra={"subscription": name})

    async def refresh(self, name: str) -> None:
        """Re-download one subscription and rewrite its profile.

        Raises ``SubscriptionNotFoundError``, ``FetchError`` or ``FormatError``;
        on failure the previous profile is left untouched. For the active
        subscription the new profile is also applied; a failed engine reload
        is logged separately and does not fail the refresh.
        """
        index = self._load()
        entry = index.find(name)
        if entry is None:
            raise SubscriptionNotFoundError(f"Subscription '{name}' not found", name=name)

        logger.info(
            "Refreshing subscription %s from %s", name, entry.url, extra={"subscription": name}
        )
        profile = await self._download(name, entry.url)
        self._write_profile(name, profile)

        entry.updated_at = datetime.now(timezone.utc)
        self._save(index)
        logger.info("Subscription refreshed", extra={"subscription": name})

        if index.active == name:
            try:
                await self._apply(name)
            except (TransientNetworkError, ControlAPIError) as exc:
                logger.error(
                    "Subscription %s refreshed but engine reload failed: %s",
                    name,
                    exc,
                    extra={"subscription": name, "error_reason": str(exc)},
                )

    async def remove(self, name: str) -> None:
        index = self._load()
        entry = index.find(name)
        if entry is None:
            raise SubscriptionNotFoundError(f"Subscription '{name}' not found", name=name)

        index.subscriptions.remove(entry)
        self.profile_path(name).unlink(missing_ok=True)
        if index.active == name:
            index.active = None
            logger.warning(
                "Active subscription %s removed — select another one",
                name,
                extra={"subscription": name},
            )
        self._save(index)
        logger.info("Subscription removed", extra={"subscription": name})

    async def use(self, name: str) -> None:
        """Make ``name`` the active subscription and apply its profile."""
        index = self._load()
        if index.find(name) is None:
            raise SubscriptionNotFoundError(f"Subscription '{name}' not found", name=name)
        await self._apply(name)
        index.active = name
        self._save(index)
        logger.info("Active subscription set to %s", name, extra={"subscription": name})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _download(self, name: str, url: str) -> str:
        try:
            async with httpx.AsyncClient(
                transport=self._transport, follow_redirects=True
            ) as client:
                response = await client.get(url, timeout=self._timeout_seconds)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"Subscription '{name}' source returned {exc.response.status_code}",
                name=name,
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                f"Subscription '{name}' source unreachable: {exc}", name=name
            ) from exc

        return self._normalizer(response.text)

    def _write_profile(self, name: str, profile: str) -> None:
        path = self.profile_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(profile, encoding="utf-8")

    async def _apply(self, name: str) -> None:
        source = self.profile_path(name)
        if not source.exists():
            raise SubscriptionNotFoundError(f"Profile file for '{name}' not found", name=name)

        self._engine_config_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, self._engine_config_path)
        logger.info(
            "Applied profile %s to %s",
            name,
            self._engine_config_path,
            extra={"subscription": name},
        )
        if self._on_apply is not None:
            await self._on_apply(self._engine_config_path)
