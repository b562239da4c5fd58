"""Editable text field of the game selector, driven by key presses and a millisecond clock."""

from __future__ import annotations

_FIRST_REPEAT_MS = 500
_NEXT_REPEAT_MS = 50
_OTHER_KEY_MS = 50

WHITE = (255, 255, 255)
CYAN = (0, 255, 255)
GREY = (128, 128, 128)

BACKSPACE = "backspace"
SPACE = "space"

_DIGITS = "0123456789"
_SHIFT_DIGITS = "=!@#$%&/()"
_LETTERS = "abcdefghijklmnopqrstuvwxyz"
_SYMBOL_KEYS = ("comma", "period", "quote", "slash", "dash", "equal")
_SYMBOLS = ",.'/-="
_SHIFT_SYMBOLS = ";:?<_>"
_NUMPAD_SYMBOL_KEYS = ("add", "subtract", "multiply", "divide")
_NUMPAD_SYMBOLS = "+-*/"
_SHIFT_NUMPAD_SYMBOLS = '"^~\\'

# key name -> (plain character, shifted character)
_NUMERIC_KEYS: dict[str, tuple[str, str]] = {
    **{digit: (digit, digit) for digit in _DIGITS},
    **{f"numpad{digit}": (digit, digit) for digit in _DIGITS},
}
_TEXT_KEYS: dict[str, tuple[str, str]] = {
    **dict(zip(_DIGITS, zip(_DIGITS, _SHIFT_DIGITS))),
    **{f"numpad{digit}": (digit, digit) for digit in _DIGITS},
    **{letter: (letter, letter.upper()) for letter in _LETTERS},
    **dict(zip(_SYMBOL_KEYS, zip(_SYMBOLS, _SHIFT_SYMBOLS))),
    **dict(zip(_NUMPAD_SYMBOL_KEYS, zip(_NUMPAD_SYMBOLS, _SHIFT_NUMPAD_SYMBOLS))),
    SPACE: (" ", " "),
}


def key_character(key: str, shift: bool = False, only_numeric: bool = False) -> str | None:
    """The character a key types, or None if it types nothing in this mode.

    Keys are named "0".."9" for the main row, "numpad0".."numpad9", "a".."z",
    "comma", "period", "quote", "slash", "dash", "equal", "add", "subtract",
    "multiply", "divide" and "space". In numeric mode shift has no effect.
    """
    table = _NUMERIC_KEYS if only_numeric else _TEXT_KEYS
    pair = table.get(key)
    if pair is None:
        return None
    return pair[1] if shift else pair[0]


class TextBox:
    """A single-line text field with key repeat timing and a length limit."""

    def __init__(
        self,
        text: str = "",
        max_size: int = 20,
        allow_typing: bool = False,
        only_numeric: bool = False,
    ) -> None:
        self.text = text
        self.max_size = max_size
        self.allow_typing = allow_typing
        self.only_numeric = only_numeric
        self.focused = False
        self.enabled = True
        self._last_key: str | None = None
        self._last_press_ms = 0
        self._wait_ms = _FIRST_REPEAT_MS

    @property
    def fill(self) -> tuple[int, int, int]:
        """Background colour: cyan while taking input, grey when disabled, else white."""
        if self.accepts_input():
            return CYAN
        if not self.enabled:
            return GREY
        return WHITE

    def accepts_input(self) -> bool:
        """Whether the field is focused, enabled and open to typing."""
        return self.focused and self.enabled and self.allow_typing

    def set_focused(self, focused: bool) -> None:
        self.focused = focused

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def _due(self, key: str, now_ms: int) -> bool:
        elapsed = now_ms - self._last_press_ms
        return (self._last_key != key and elapsed > _OTHER_KEY_MS) or elapsed > self._wait_ms

    def _register(self, key: str, now_ms: int) -> None:
        self._last_press_ms = now_ms
        self._wait_ms = _NEXT_REPEAT_MS if self._last_key == key else _FIRST_REPEAT_MS
        self._last_key = key

    def press(self, key: str, shift: bool = False, now_ms: int = 0) -> bool:
        """Handle a held key at time now_ms; return whether the press took effect.

        A key typed again must wait 500 ms, then 50 ms while it keeps repeating;
        a different key must come more than 50 ms after the last one.
        """
        if not (self.allow_typing and self.enabled):
            return False
        if key == BACKSPACE:
            if not self._due(key, now_ms):
                return False
            self.text = self.text[:-1]
            self._register(key, now_ms)
            return True
        if len(self.text) >= self.max_size:
            return False
        char = key_character(key, shift, self.only_numeric)
        if char is None or not self._due(key, now_ms):
            return False
        self.text += char
        self._register(key, now_ms)
        return True

    def increment(self, step: int = 1) -> str:
        """Add step to the number held in the field and return the new text."""
        self.text = str(int(self.text) + step)
        return self.text

    def __repr__(self) -> str:
        return f"TextBox({self.text!r})"