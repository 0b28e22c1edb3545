"""Configuration management from environment variables and the config file."""

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from machinebell.db.models import Language, ReminderCommandDef

# Load .env file if it exists
load_dotenv()

# Telegram allows [a-z0-9_]{1,32}; the longest prefix is "stoppe"
COMMAND_SUFFIX_PATTERN = re.compile(r"[a-z0-9_]{1,26}")


class ConfigurationError(ValueError):
    """The configuration is missing or invalid."""


class UnknownMachineError(LookupError):
    """No reminder command is configured for a machine id."""

    def __init__(self, machine_type: str):
        super().__init__(f"The machine {machine_type!r} is not configured")
        self.machine_type = machine_type


class Config:
    """Application configuration loaded from environment variables."""

    # Telegram, overrides the token of the config file
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    # Reminder commands and escalation settings
    CONFIG_PATH: Path = Path(os.getenv("CONFIG_PATH", "./config.json"))

    # Persisted reminders and stats
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def reminders_path(cls) -> Path:
        return cls.DATA_DIR / "reminders.json"

    @classmethod
    def stats_path(cls) -> Path:
        return cls.DATA_DIR / "stats.json"

    @classmethod
    def validate(cls) -> "BotConfig":
        """Load and validate the bot configuration."""
        bot_config = load_bot_config(cls.CONFIG_PATH, token_override=cls.TELEGRAM_BOT_TOKEN)

        # Ensure data directory exists
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)

        return bot_config


@dataclass(frozen=True)
class BotConfig:
    """The validated content of the config file."""

    token: str
    require_reply_number_of_reminder_messages: int
    require_reply_time_between_reminder_messages_in_min: int
    language: Language
    reminder_commands: tuple[ReminderCommandDef, ...]
    timezone: str = "UTC"

    @property
    def escalation_enabled(self) -> bool:
        return self.require_reply_number_of_reminder_messages > 0

    def find_command(self, machine_type: str) -> ReminderCommandDef:
        """Get the reminder command of a machine.

        Raises:
            UnknownMachineError: if the machine is not configured
        """
        for command in self.reminder_commands:
            if command.id == machine_type:
                return command
        raise UnknownMachineError(machine_type)


def load_bot_config(path: Path, token_override: str = "") -> BotConfig:
    """Read and validate the config file.

    Raises:
        ConfigurationError: if the file is missing or invalid
    """
    if not path.exists():
        raise ConfigurationError(
            f"The configuration file {path} was not found. "
            "Copy example.config.json to this name and update the values in it."
        )

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"The configuration file {path} is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigurationError("The configuration must be a JSON object")

    return parse_bot_config(raw, token_override=token_override)


def parse_bot_config(raw: dict, token_override: str = "") -> BotConfig:
    """Validate a config dict. Older key names are accepted."""
    token = token_override or raw.get("token") or raw.get("telegramToken") or ""
    if not token:
        raise ConfigurationError(
            "A Telegram token is required (config 'token' or TELEGRAM_BOT_TOKEN)"
        )

    locale = raw.get("locale", raw.get("endUserLanguage"))
    try:
        language = Language(locale)
    except ValueError:
        raise ConfigurationError(f"The specified language ({locale!r}) is not implemented")

    number = _int_field(raw, "requireReplyNumberOfReminderMessages", default=0)
    interval = _int_field(raw, "requireReplyTimeBetweenReminderMessagesInMin", default=0)
    if number < 0:
        raise ConfigurationError("requireReplyNumberOfReminderMessages must not be negative")
    if number > 0 and interval <= 0:
        raise ConfigurationError(
            "requireReplyTimeBetweenReminderMessagesInMin must be positive "
            "when reminder messages require a reply"
        )

    timezone = raw.get("timezone", "UTC")
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError(f"Unknown timezone: {timezone!r}")

    commands = tuple(_parse_command(c, language) for c in raw.get("reminderCommands") or [])
    if not commands:
        raise ConfigurationError("At least one entry in reminderCommands is required")

    ids = [c.id for c in commands]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigurationError(f"Duplicate reminder command ids: {', '.join(duplicates)}")

    suffixes = [c.suffix(language) for c in commands]
    if len(set(suffixes)) != len(suffixes):
        raise ConfigurationError("Reminder command suffixes must be unique")

    return BotConfig(
        token=token,
        require_reply_number_of_reminder_messages=number,
        require_reply_time_between_reminder_messages_in_min=interval,
        language=language,
        reminder_commands=commands,
        timezone=timezone,
    )


def _int_field(raw: dict, key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be a number")
    try:
        return round(value)
    except (TypeError, ValueError, OverflowError):
        raise ConfigurationError(f"{key} must be a number")


def _parse_command(raw: dict, language: Language) -> ReminderCommandDef:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ConfigurationError(f"Every reminder command needs an id: {raw!r}")

    command_id = str(raw["id"])
    name = raw.get("name") or {}
    suffix = raw.get("commandSuffix", raw.get("commandPost")) or {}

    if language.value not in name:
        raise ConfigurationError(f"Reminder command {command_id!r} has no name for {language.value!r}")
    if language.value not in suffix:
        raise ConfigurationError(
            f"Reminder command {command_id!r} has no command suffix for {language.value!r}"
        )
    if not COMMAND_SUFFIX_PATTERN.fullmatch(suffix[language.value]):
        raise ConfigurationError(
            f"Invalid command suffix {suffix[language.value]!r} of {command_id!r} "
            "(lowercase letters, digits and underscores only)"
        )

    wait = _int_field(raw, "waitTimeInMin", default=0)
    if wait <= 0:
        raise ConfigurationError(f"waitTimeInMin of {command_id!r} must be positive")

    return ReminderCommandDef(
        id=command_id,
        wait_time_in_min=wait,
        name=dict(name),
        command_suffix=dict(suffix),
    )
