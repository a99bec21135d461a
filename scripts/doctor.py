"""Preflight checks for a routing engine configuration."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from src.adapters import ADAPTER_CLASSES
from src.core.config import EngineConfig, PROVIDER_KEY_ENV, load_config
from src.core.errors import ConfigurationError
from src.usage.pricing import PriceTable

MIN_PYTHON = (3, 10)


@dataclass
class DoctorResult:
    ok: bool
    messages: List[str]


def _python_version_tuple() -> Tuple[int, int, int]:
    v = sys.version_info
    return (v.major, v.minor, v.micro)


def _check_python_version(errors: List[str]) -> None:
    current = _python_version_tuple()
    if current[:2] < MIN_PYTHON:
        errors.append(
            f"Python {current[0]}.{current[1]} is unsupported. "
            f"Use Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer."
        )


def _check_providers(config: EngineConfig, errors: List[str], warnings: List[str]) -> None:
    usable = []
    for provider_id, settings in config.providers.items():
        if provider_id not in ADAPTER_CLASSES:
            errors.append(
                f"Provider `{provider_id}` has no adapter. Known providers: {', '.join(sorted(ADAPTER_CLASSES))}."
            )
            continue
        if provider_id != "stub" and not settings.api_key.strip():
            key_env = PROVIDER_KEY_ENV.get(provider_id, "its api_key")
            warnings.append(f"Provider `{provider_id}` has no credential and will be skipped (set {key_env}).")
            continue
        usable.append(provider_id)

    if not usable:
        errors.append(
            "No usable provider configured. Set at least one provider key "
            "or `USE_STUB_ADAPTERS=true`."
        )


def _check_routes(config: EngineConfig, warnings: List[str]) -> None:
    configured = set(config.providers)
    pricing = PriceTable.from_entries(config.pricing, include_defaults=config.use_default_pricing)

    for alias, targets in sorted(config.routing.model_routes.items()):
        providers = [target.split("/", 1)[0] for target in targets]
        missing = [p for p in providers if p not in configured]
        if len(missing) == len(providers):
            warnings.append(f"Route `{alias}` has no configured provider; requests for it will be rejected.")
        elif missing:
            warnings.append(f"Route `{alias}` skips unconfigured providers: {', '.join(missing)}.")

        for target in targets:
            provider_id, model = target.split("/", 1)
            if provider_id in configured and pricing.get_price(provider_id, model) is None:
                warnings.append(f"No price for `{target}`; responses from it carry no cost.")


def _check_time_budgets(config: EngineConfig, warnings: List[str]) -> None:
    for provider_id in config.providers:
        if config.attempt_timeout_for(provider_id) > config.request_deadline:
            warnings.append(
                f"Attempt timeout for `{provider_id}` exceeds the request deadline "
                f"({config.request_deadline:g}s); the deadline will cut it short."
            )


def run_doctor(env: Optional[Mapping[str, str]] = None, path: Optional[str] = None) -> DoctorResult:
    env_map: Mapping[str, str] = os.environ if env is None else env
    errors: List[str] = []
    warnings: List[str] = []

    _check_python_version(errors)

    try:
        config = load_config(path, environ=env_map)
    except ConfigurationError as exc:
        errors.append(f"Configuration invalid: {exc}")
        for detail in exc.error.details.get("errors", []):
            location = ".".join(str(part) for part in detail.get("loc", ()))
            errors.append(f"{location}: {detail.get('msg')}")
        config = None

    if config is not None:
        _check_providers(config, errors, warnings)
        _check_routes(config, warnings)
        _check_time_budgets(config, warnings)

    messages: List[str] = []
    if errors:
        messages.append("Doctor found configuration issues:")
        for i, msg in enumerate(errors, 1):
            messages.append(f"{i}. {msg}")
        messages.append("Fix the items above and rerun `python -m scripts.doctor`.")
    else:
        messages.append("Doctor checks passed.")

    if warnings:
        messages.append("Warnings:")
        for i, msg in enumerate(warnings, 1):
            messages.append(f"- {msg}")

    return DoctorResult(ok=not errors, messages=messages)


def main() -> int:
    result = run_doctor(path=sys.argv[1] if len(sys.argv) > 1 else None)
    print("\n".join(result.messages))
    return 0 if result.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
