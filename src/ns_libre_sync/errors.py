"""Jerarquía de errores de sincronización y sus códigos de salida."""

from __future__ import annotations


class SyncError(Exception):
    """Base error for a run that must stop."""

    exit_code = 1


class ConfigError(SyncError):
    """Missing or invalid configuration, or unreadable persisted config."""

    exit_code = 1


class AuthError(SyncError):
    """The sink rejected the credentials or returned no session."""

    exit_code = 2


class TransferError(SyncError):
    """Uploading entries to the sink failed."""

    exit_code = 3


class FetchError(SyncError):
    """Reading entries from the source failed."""

    exit_code = 4
