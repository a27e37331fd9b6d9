"""Shared plumbing for the provider packages (payments, maps, chat, messaging).

Every package exposes a ``build_*_provider()`` factory that reads its provider
name from the environment. ``disabled`` raises ``IntegrationDisabledError``;
a known provider with missing credentials raises
``IntegrationMisconfiguredError``.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass
class IntegrationResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict = field(default_factory=dict)


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


IntegrationUnavailable = (IntegrationDisabledError, IntegrationMisconfiguredError)


def env_value(key: str, default: str = "") -> str:
    return (os.getenv(key) or default).strip()


def provider_name(env_key: str, default: str) -> str:
    return env_value(env_key, default).lower()


def missing_env(*keys: str) -> list[str]:
    return [k for k in keys if not env_value(k)]


def require_env(label: str, *keys: str) -> dict:
    """Values for ``keys``, or ``IntegrationMisconfiguredError`` naming the gaps."""
    missing = missing_env(*keys)
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:{label} missing {', '.join(missing)}")
    return {k: env_value(k) for k in keys}
