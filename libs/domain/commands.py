from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final

from shared.errors import CommandSyntaxError


class Verb(str, Enum):
    HARVEST = "harvest"
    PLATFORM = "platform"
    COME = "come"
    FOLLOW = "follow"
    STOP_FOLLOW = "stopfollow"
    THROW = "throw"


# verbs that take a positive integer, with the usage line narrated on bad input
USAGE: Final[dict[Verb, str]] = {
    Verb.HARVEST: "Usage: !harvest <positive number>",
    Verb.PLATFORM: "Usage: !platform <positive number>",
}

# verbs whose number may be left out
OPTIONAL_AMOUNT: Final[dict[Verb, str]] = {
    Verb.THROW: "Usage: !throw [positive number]",
}


@dataclass(frozen=True)
class Command:
    verb: Verb
    requester: str
    amount: int | None = None


def strip_address(text: str, agent_name: str) -> str | None:
    """Return the message body when it is addressed to ``agent_name``, else None.

    Accepts an ``@name`` token anywhere in the line or the bare name as a
    prefix (optionally followed by ``:`` or ``,``). Case-insensitive.
    """
    me = agent_name.lower()
    tokens = text.split()
    mention = f"@{me}"
    if any(t.lower().rstrip(":,") == mention for t in tokens):
        return " ".join(t for t in tokens if t.lower().rstrip(":,") != mention)

    stripped = text.strip()
    if not stripped.lower().startswith(me):
        return None
    rest = stripped[len(me) :]
    if rest and not (rest[0].isspace() or rest[0] in ":,"):
        # "Bobby ..." is not addressed to "Bob"
        return None
    return rest.lstrip(" \t:,")


def parse_body(body: str, requester: str) -> Command | None:
    """Parse an unaddressed command line such as ``!harvest 5``.

    Unknown verbs and non-commands give None; a known verb with a bad
    argument raises CommandSyntaxError carrying the usage line.
    """
    parts = body.split()
    if not parts or not parts[0].startswith("!"):
        return None
    try:
        verb = Verb(parts[0][1:].lower())
    except ValueError:
        return None

    raw = parts[1] if len(parts) > 1 else ""
    usage = USAGE.get(verb)
    if usage is None:
        usage = OPTIONAL_AMOUNT.get(verb)
        if usage is None or not raw:
            return Command(verb=verb, requester=requester)
    if not raw.isdigit() or int(raw) <= 0:
        raise CommandSyntaxError(usage)
    return Command(verb=verb, requester=requester, amount=int(raw))


def parse_command(text: str, *, agent_name: str, sender: str) -> Command | None:
    body = strip_address(text, agent_name)
    if body is None:
        return None
    return parse_body(body, sender)
