from dataclasses import dataclass
from typing import Optional

from ftpcore.protocol.errors import CommandSyntaxError, LineTooLong

MAX_COMMAND = 255 + 8
MAX_VERB = 4

CR = 0x0D
LF = 0x0A
BACKSLASH = 0x5C
SLASH = 0x2F


@dataclass(frozen=True)
class Command:
    verb: str
    params: str = ''

    @property
    def is_empty(self) -> bool:
        return not self.verb


class CommandParser:
    """Assembles control-channel bytes into commands, one byte per ``feed`` call.

    ``feed`` returns None while a line is still incomplete. A full line gives
    a Command (an empty line gives ``Command('')``). Malformed or oversized
    lines raise CommandSyntaxError / LineTooLong and reset the buffer.
    """

    def __init__(self, capacity: int = MAX_COMMAND):
        self.capacity = capacity
        self._buffer = bytearray()
        self._discarding = False

    def reset(self):
        self._buffer.clear()
        self._discarding = False

    def feed(self, byte: int) -> Optional[Command]:
        if byte == BACKSLASH:
            byte = SLASH

        if byte == CR:
            return None

        if byte != LF:
            if self._discarding:
                return None
            if len(self._buffer) >= self.capacity:
                # the rest of the oversized line is dropped up to its terminator
                self._buffer.clear()
                self._discarding = True
                raise LineTooLong("Syntax error")
            self._buffer.append(byte)
            return None

        if self._discarding:
            self._discarding = False
            return None

        line = self._buffer.decode('utf-8', errors='replace')
        self._buffer.clear()
        return self.parse_line(line)

    @staticmethod
    def parse_line(line: str) -> Command:
        if not line:
            return Command('')

        verb, sep, params = line.partition(' ')
        if len(verb.encode('utf-8')) > MAX_VERB or not verb:
            raise CommandSyntaxError("Syntax error")

        return Command(verb.upper(), params.lstrip(' ') if sep else '')
