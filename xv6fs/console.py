"""Console input line discipline, console output and printf-style formatting."""

from __future__ import annotations

from typing import Callable, Iterable, Iterator

BACKSPACE = 0x100
INPUT_BUF = 128

_MASK32 = 0xFFFFFFFF


def _ctrl(ch: str) -> int:
    """Code of Control-ch."""
    return ord(ch) - ord("@")


_CTRL_D = _ctrl("D")
_CTRL_H = _ctrl("H")
_CTRL_P = _ctrl("P")
_CTRL_U = _ctrl("U")
_DELETE = 0x7F


def _int32(value: int) -> int:
    value &= _MASK32
    return value - (1 << 32) if value & 0x80000000 else value


def _printint(value: int, base: int, signed: bool, digits: str) -> str:
    xx = _int32(value)
    negative = signed and xx < 0
    x = (-xx if negative else xx) & _MASK32
    out = []
    while True:
        out.append(digits[x % base])
        x //= base
        if x == 0:
            break
    if negative:
        out.append("-")
    return "".join(reversed(out))


def _string(value: object) -> str:
    if value is None:
        return "(null)"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).split(b"\0", 1)[0].decode("latin-1")
    return str(value).split("\0", 1)[0]


def _format(fmt: str, args: tuple, digits: str, with_char: bool) -> str:
    it: Iterator[object] = iter(args)

    def arg() -> object:
        try:
            return next(it)
        except StopIteration:
            raise TypeError("not enough arguments for format string") from None

    out: list[str] = []
    chars = iter(fmt)
    for c in chars:
        if c == "\0":
            break
        if c != "%":
            out.append(c)
            continue
        c = next(chars, "\0")
        if c == "\0":
            break
        if c == "d":
            out.append(_printint(int(arg()), 10, True, digits))
        elif c in "xp":
            out.append(_printint(int(arg()), 16, False, digits))
        elif c == "s":
            out.append(_string(arg()))
        elif c == "c" and with_char:
            out.append(chr(int(arg()) & 0xFF))
        elif c == "%":
            out.append("%")
        else:
            # Unknown sequences are printed to draw attention.
            out.append("%" + c)
    return "".join(out)


def format_kernel(fmt: str, *args: object) -> str:
    """Format like the kernel's printer: %d, %x, %p, %s and %%."""
    if fmt is None:
        return ""
    return _format(fmt, args, "0123456789abcdef", with_char=False)


def format_user(fmt: str, *args: object) -> str:
    """Format like the user-level printer: %d, %x, %p, %s, %c and %%."""
    return _format(fmt, args, "0123456789ABCDEF", with_char=True)


class Console:
    """A serial console: echoed, line-edited input and byte output."""

    def __init__(
        self,
        sink: Callable[[bytes], object] | None = None,
        procdump: Callable[[], object] | None = None,
    ) -> None:
        self.output = bytearray()
        self._sink = sink
        self._procdump = procdump
        self._buf = [0] * INPUT_BUF
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def _emit(self, data: bytes) -> None:
        if self._sink is not None:
            self._sink(data)
        else:
            self.output += data

    def putc(self, c: int) -> None:
        """Output one character; BACKSPACE erases the previous one."""
        if c == BACKSPACE:
            self._emit(b"\b \b")
        else:
            self._emit(bytes([c & 0xFF]))

    def interrupt(self, chars: bytes | str | Iterable[int]) -> None:
        """Feed received characters through the line discipline."""
        if isinstance(chars, str):
            chars = chars.encode("utf-8")
        doprocdump = False
        for c in chars:
            if c == _CTRL_P:
                doprocdump = True
            elif c == _CTRL_U:
                while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF] != ord("\n"):
                    self._e -= 1
                    self.putc(BACKSPACE)
            elif c in (_CTRL_H, _DELETE):
                if self._e != self._w:
                    self._e -= 1
                    self.putc(BACKSPACE)
            elif c != 0 and self._e - self._r < INPUT_BUF:
                if c == ord("\r"):
                    c = ord("\n")
                self._buf[self._e % INPUT_BUF] = c
                self._e += 1
                self.putc(c)
                if c == ord("\n") or c == _CTRL_D or self._e == self._r + INPUT_BUF:
                    self._w = self._e
        if doprocdump and self._procdump is not None:
            self._procdump()

    def read(self, n: int) -> bytes:
        """Read up to n bytes of committed input, stopping after a newline.

        Control-D ends the read; on its own it yields b"" (end of file).
        Raises BlockingIOError when no committed input is available.
        """
        out = bytearray()
        while len(out) < n:
            if self._r == self._w:
                if not out:
                    raise BlockingIOError("no console input available")
                break
            c = self._buf[self._r % INPUT_BUF]
            self._r += 1
            if c == _CTRL_D:
                if out:
                    # Keep ^D so the next read returns 0 bytes.
                    self._r -= 1
                break
            out.append(c & 0xFF)
            if c == ord("\n"):
                break
        return bytes(out)

    def write(self, data: bytes | str) -> int:
        """Write bytes to the console; returns the count written."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        for c in data:
            self.putc(c & 0xFF)
        return len(data)