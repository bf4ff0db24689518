"""Resolución de la configuración efectiva (entorno, archivo, preguntas)."""

from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from rich.console import Console
from rich.prompt import Confirm, IntPrompt, Prompt

from ns_libre_sync.errors import ConfigError
from ns_libre_sync.model import EffectiveConfig, RunMode
from ns_libre_sync.storage import ConfigStore

logger = logging.getLogger(__name__)

REQUIRED_KEYS: tuple[str, ...] = (
    "nightscoutUrl",
    "nightscoutToken",
    "libreUsername",
    "librePassword",
    "glucose",
    "food",
    "insulin",
    "libreDevice",
)

_TRUE_VALUES = ("true", "1")
_FALSE_VALUES = ("false", "0")


def coerce_value(value: Any) -> Any:
    """Coerce ``"true"``/``"1"`` and ``"false"``/``"0"`` to booleans.

    Any other value is returned unchanged.
    """
    if isinstance(value, str):
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
    return value


def new_device_id() -> str:
    """Random device identifier in uppercase canonical UUID form."""
    return str(uuid.uuid4()).upper()


class EnvironmentProvider:
    """Reads the required settings from an environment mapping."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def values(self) -> dict[str, Any]:
        """Coerced values for the required keys that are set."""
        return {
            key: coerce_value(self._environ[key])
            for key in REQUIRED_KEYS
            if self._environ.get(key) is not None
        }

    def missing(self) -> list[str]:
        return [key for key in REQUIRED_KEYS if self._environ.get(key) is None]

    def is_complete(self) -> bool:
        return not self.missing()


@dataclass(frozen=True)
class PromptAnswers:
    """Values collected interactively."""

    values: dict[str, Any]
    auto: bool
    year: int | None
    month: int | None
    reset_device: bool


class PromptProvider:
    """Asks the operator for the configuration on the console."""

    def __init__(
        self,
        console: Console | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        """Create the provider.

        Args:
            console: Rich console used to show the questions and read answers.
            today: Returns the current date, used for the default period.
        """
        self._console = console or Console()
        self._today = today

    def collect(self, defaults: Mapping[str, Any]) -> PromptAnswers:
        """Ask every field, offering persisted values as defaults.

        Year and month are only asked when automatic mode is declined. They
        default to the previous calendar month. The month is entered 1-12
        and returned 0-indexed.

        Raises:
            ConfigError: If a required answer is empty or the month is out of range.
        """
        values: dict[str, Any] = {
            "nightscoutUrl": self._text(
                "Enter your nightscout url", defaults.get("nightscoutUrl")
            ),
            "nightscoutToken": self._text(
                "Enter your nightscout token",
                defaults.get("nightscoutToken"),
                required=False,
            ),
            "libreUsername": self._text(
                "Enter your libreview username", defaults.get("libreUsername")
            ),
            "librePassword": self._text(
                "Enter your libreview password",
                defaults.get("librePassword"),
                secret=True,
            ),
            "glucose": self._confirm("Transfer Glucose?", defaults.get("glucose"), True),
            "food": self._confirm("Transfer Food?", defaults.get("food"), True),
            "insulin": self._confirm("Transfer Insulin?", defaults.get("insulin"), True),
        }
        auto = self._confirm(
            "Enable automatic mode? Automatic mode transfers today's data and "
            "remembers where it got to between runs (for cron jobs)",
            defaults.get("auto"),
            False,
        )

        year: int | None = None
        month: int | None = None
        if not auto:
            previous = self._today().replace(day=1) - timedelta(days=1)
            year = IntPrompt.ask(
                "Enter the year you want to transfer",
                default=previous.year,
                console=self._console,
            )
            month = IntPrompt.ask(
                "Enter the month you want to transfer (1-12)",
                default=previous.month,
                console=self._console,
            )
            if not 1 <= month <= 12:
                raise ConfigError(f"Month must be between 1 and 12, got {month}")
            month -= 1

        reset_device = self._confirm(
            "If you have problems with your transfer, recreate your device id",
            None,
            False,
        )
        return PromptAnswers(
            values=values, auto=auto, year=year, month=month, reset_device=reset_device
        )

    def _text(
        self,
        label: str,
        default: Any,
        *,
        required: bool = True,
        secret: bool = False,
    ) -> str:
        saved = "" if default is None else str(default)
        answer = Prompt.ask(
            label,
            default=saved,
            show_default=bool(saved) and not secret,
            password=secret,
            console=self._console,
        ).strip()
        if not answer and required:
            raise ConfigError(f"{label}: a value is required")
        return answer

    def _confirm(self, label: str, default: Any, fallback: bool) -> bool:
        current = default if isinstance(default, bool) else fallback
        return Confirm.ask(label, default=current, console=self._console)


@dataclass(frozen=True)
class Resolution:
    """Effective configuration plus what this run should do with it."""

    config: EffectiveConfig
    mode: RunMode
    year: int | None = None
    month: int | None = None
    reset_device: bool = False
    should_sync: bool = True


def resolve_config(
    persisted: Mapping[str, Any],
    environment: EnvironmentProvider,
    prompt: PromptProvider | None,
    store: ConfigStore,
    *,
    reconfigure: bool = False,
    device_id_factory: Callable[[], str] = new_device_id,
) -> Resolution:
    """Merge persisted, environment and interactive settings.

    Every environment variable that is set overrides the persisted value,
    also when the environment is incomplete. A complete environment means an unattended run: ``auto`` is forced on
    and nothing is asked. A persisted ``auto`` config is reused as is unless
    ``reconfigure`` is set. Otherwise the operator is prompted. The merged
    configuration is saved before returning.

    Args:
        persisted: Contents of the config file.
        environment: Source of environment overrides.
        prompt: Interactive provider; None when no terminal is available.
        store: Where the merged configuration is saved.
        reconfigure: Ignore a persisted ``auto`` flag and prompt again.
        device_id_factory: Generates new device ids.

    Returns:
        The resolution for this run.

    Raises:
        ConfigError: If the configuration cannot be completed.
    """
    base = {**persisted, **environment.values()}
    if environment.is_complete():
        merged = {**base, "auto": True}
        config = EffectiveConfig.from_mapping(merged)
        store.save(merged)
        return Resolution(config=config, mode=RunMode.AUTOMATIC)

    for key in environment.missing():
        logger.info("Environment variable %s is missing.", key)

    if base.get("auto") is True and not reconfigure:
        merged = dict(base)
        if not merged.get("libreDevice"):
            merged["libreDevice"] = device_id_factory()
        config = EffectiveConfig.from_mapping(merged)
        store.save(merged)
        return Resolution(config=config, mode=RunMode.AUTOMATIC)

    if prompt is None:
        raise ConfigError(
            "Configuration incomplete and no interactive prompt available; "
            "set the environment variables: " + ", ".join(environment.missing())
        )

    answers = prompt.collect(base)
    device = base.get("libreDevice")
    if answers.reset_device or not device:
        device = device_id_factory()

    merged = {
        **base,
        **answers.values,
        "libreDevice": device,
        "auto": answers.auto,
    }
    config = EffectiveConfig.from_mapping(merged)
    store.save(merged)

    if answers.auto:
        return Resolution(
            config=config,
            mode=RunMode.AUTOMATIC,
            reset_device=answers.reset_device,
            should_sync=False,
        )
    return Resolution(
        config=config,
        mode=RunMode.MANUAL,
        year=answers.year,
        month=answers.month,
        reset_device=answers.reset_device,
    )
