"""Message text formatters for the supported languages."""

from dataclasses import dataclass
from datetime import datetime
from html import escape

from machinebell.db.models import Language, Reminder, ReminderCommandDef
from machinebell.utils.time_utils import (
    format_clock_time,
    format_local_datetime,
    whole_days_between,
)

TEXTS: dict[Language, dict[str, str]] = {
    Language.DE: {
        "help": "hilfe",
        "start": "starte",
        "status": "status",
        "stop": "stoppe",
        "help_description": "Befehl und Bot Hilfe",
        "start_description": "Erinnere in {minutes} Minuten",
        "status_description": "Status der Erinnerung",
        "stop_description": "Stoppe die Erinnerung",
        "help_header": "Es gibt die folgenden Befehle:",
        "help_footer": "Der Bot läuft aktuell auf '{host}' seit {since} ({days} Tage)",
        "started": "{name} wurde gestartet\n(Ist in {minutes} Minuten fertig - {ready} Uhr)",
        "started_count": "{user} hat {name} schon {count} mal gestartet",
        "status_found": (
            "Es wurde eine Erinnerung bezüglich {name} gefunden:\n"
            "Sie wurde um {start} Uhr gestartet und endet um {end} Uhr"
        ),
        "not_found": "Es wurde aktuell keine Erinnerung bezüglich {name} gefunden",
        "stopped": "Die Erinnerung bezüglich {name} (gestartet um {start} Uhr) wurde gestoppt",
        "due": "{name} ist fertig",
        "due_reply": "Wenn Zeit bitte dieser Nachricht antworten",
        "nudge": "Wie sieht es jetzt aus bezüglich: {name}???\n(Versuch #{attempt})",
        "give_up": "Ich gebe es auf darauf aufmerksam zu machen, weil niemand reagiert :(",
        "accepted": "{user} übernimmt {name}",
        "accepted_count": "{user} hat bezüglich {name} schon {count} mal geantwortet",
        "error": "Da ist leider etwas schiefgelaufen. Bitte versuche es noch einmal.",
    },
    Language.EN: {
        "help": "help",
        "start": "start",
        "status": "status",
        "stop": "stop",
        "help_description": "Commands and bot help",
        "start_description": "Remind me in {minutes} minutes",
        "status_description": "Status of the reminder",
        "stop_description": "Stop the reminder",
        "help_header": "The following commands are available:",
        "help_footer": "The bot is running on '{host}' since {since} ({days} days)",
        "started": "{name} was started\n(Ready in {minutes} minutes - {ready})",
        "started_count": "{user} has started {name} {count} times",
        "status_found": (
            "Found a reminder for {name}:\n"
            "It was started at {start} and ends at {end}"
        ),
        "not_found": "There is currently no reminder for {name}",
        "stopped": "The reminder for {name} (started at {start}) was stopped",
        "due": "{name} is done",
        "due_reply": "Please reply to this message when you have time",
        "nudge": "What about {name} now???\n(Attempt #{attempt})",
        "give_up": "I give up reminding you because nobody responds :(",
        "accepted": "{user} takes care of {name}",
        "accepted_count": "{user} has already answered {count} times about {name}",
        "error": "Sorry, something went wrong. Please try again.",
    },
}


@dataclass(frozen=True)
class CommandNames:
    """Telegram command names (without slash) of one machine."""

    start: str
    status: str
    stop: str


def text(language: Language, key: str, **values) -> str:
    return TEXTS[language][key].format(**values)


def help_command_name(language: Language) -> str:
    return TEXTS[language]["help"]


def command_names(command: ReminderCommandDef, language: Language) -> CommandNames:
    """Build the start/status/stop command names of a machine."""
    suffix = command.suffix(language)
    return CommandNames(
        start=f"{TEXTS[language]['start']}{suffix}",
        status=f"{TEXTS[language]['status']}{suffix}",
        stop=f"{TEXTS[language]['stop']}{suffix}",
    )


def bot_command_descriptions(
    commands: list[ReminderCommandDef], language: Language
) -> list[tuple[str, str]]:
    """Command list in the order shown by Telegram clients."""
    descriptions = [(help_command_name(language), text(language, "help_description"))]
    for command in commands:
        names = command_names(command, language)
        descriptions.append(
            (names.start, text(language, "start_description", minutes=command.wait_time_in_min))
        )
    for command in commands:
        names = command_names(command, language)
        descriptions.append((names.stop, text(language, "stop_description")))
        descriptions.append((names.status, text(language, "status_description")))
    return descriptions


def format_help_message(
    commands: list[ReminderCommandDef],
    language: Language,
    host: str,
    started_at: datetime,
    now: datetime,
    tz: str,
) -> str:
    """Format the help message with all commands."""
    lines = [text(language, "help_header")]

    for command in commands:
        names = command_names(command, language)
        lines.append("")
        lines.append(f"<b>{escape(command.display_name(language))}</b>:")
        lines.append(
            f"- /{names.start}: <i>"
            f"{text(language, 'start_description', minutes=command.wait_time_in_min)}</i>"
        )
        lines.append(f"- /{names.stop}: <i>{text(language, 'stop_description')}</i>")
        lines.append(f"- /{names.status}: <i>{text(language, 'status_description')}</i>")

    lines.append("")
    footer = text(
        language,
        "help_footer",
        host=escape(host),
        since=format_local_datetime(started_at, tz),
        days=whole_days_between(started_at, now),
    )
    lines.append(f"<i>{footer}</i>")
    return "\n".join(lines)


def format_started_message(
    command: ReminderCommandDef,
    language: Language,
    user_name: str,
    ready_at: datetime,
    count: int,
    tz: str,
) -> str:
    name = escape(command.display_name(language))
    started = text(
        language,
        "started",
        name=name,
        minutes=command.wait_time_in_min,
        ready=format_clock_time(ready_at, tz),
    )
    counted = text(language, "started_count", user=escape(user_name), name=name, count=count)
    return f"{started}\n<i>{counted}</i>"


def format_status_message(
    command: ReminderCommandDef,
    language: Language,
    reminder: Reminder,
    due_at: datetime,
    tz: str,
) -> str:
    return text(
        language,
        "status_found",
        name=escape(command.display_name(language)),
        start=format_clock_time(reminder.start_time, tz),
        end=format_clock_time(due_at, tz),
    )


def format_not_found_message(command: ReminderCommandDef, language: Language) -> str:
    return text(language, "not_found", name=escape(command.display_name(language)))


def format_stopped_message(
    command: ReminderCommandDef, language: Language, reminder: Reminder, tz: str
) -> str:
    return text(
        language,
        "stopped",
        name=escape(command.display_name(language)),
        start=format_clock_time(reminder.start_time, tz),
    )


def format_due_notice(
    command: ReminderCommandDef, language: Language, reply_required: bool
) -> str:
    """Format the message sent when a reminder fires."""
    message = text(language, "due", name=escape(command.display_name(language)))
    if reply_required:
        message += "\n" + text(language, "due_reply")
    return message


def format_nudge(command: ReminderCommandDef, language: Language, attempt: int) -> str:
    return text(
        language, "nudge", name=escape(command.display_name(language)), attempt=attempt
    )


def format_give_up(language: Language) -> str:
    return text(language, "give_up")


def format_accepted_message(
    command: ReminderCommandDef, language: Language, user_name: str, count: int
) -> str:
    name = escape(command.display_name(language))
    user = escape(user_name)
    accepted = text(language, "accepted", user=user, name=name)
    counted = text(language, "accepted_count", user=user, name=name, count=count)
    return f"{accepted}\n<i>{counted}</i>"


def format_error_message(language: Language) -> str:
    return text(language, "error")
