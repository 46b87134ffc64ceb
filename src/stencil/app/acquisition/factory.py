"""Wire an AcquisitionCoordinator from runtime settings."""

from __future__ import annotations

import requests

from stencil.adapters.credentials import EnvCredentialStore
from stencil.adapters.fs_copier import ShutilFileCopier
from stencil.adapters.git_transport import GitTransport
from stencil.adapters.registry_source import RegistrySource
from stencil.app.validation import TemplateValidator
from stencil.domain.cache import CacheIndex
from stencil.ports.collaborators import CredentialStore, Logger, VariableSubstitutor
from stencil.settings import RuntimeSettings
from stencil.utils.telemetry import TelemetryLogger

from .service import AcquisitionCoordinator


def build_coordinator(
    settings: RuntimeSettings,
    *,
    credentials: CredentialStore | None = None,
    session: requests.Session | None = None,
    logger: Logger | None = None,
    substitutor: VariableSubstitutor | None = None,
) -> AcquisitionCoordinator:
    logger = logger or TelemetryLogger(settings, component="acquisition")
    credentials = credentials or EnvCredentialStore()
    copier = ShutilFileCopier()
    index = CacheIndex(
        settings.cache_dir,
        policy=settings.cache_policy,
        max_entries=settings.max_cache_entries,
        copier=copier,
        logger=logger,
    )
    registry = RegistrySource(
        settings.registries,
        credentials=credentials,
        session=session,
        logger=logger,
        timeout=settings.network_timeout,
    )
    git = GitTransport(settings.git, credentials=credentials, logger=logger)
    return AcquisitionCoordinator(
        index,
        registry=registry,
        git=git,
        validator=TemplateValidator(logger=logger),
        validation_options=settings.validation_options(),
        copier=copier,
        substitutor=substitutor,
        logger=logger,
        temp_dir=settings.temp_dir,
        network_timeout=settings.network_timeout,
    )


__all__ = ["build_coordinator"]
