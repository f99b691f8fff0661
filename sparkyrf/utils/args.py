"""
Scan-based parsing of command-line tokens of the form ``--key value`` and ``--flag``.

Every accessor re-scans the complete token sequence, i.e., each call is O(n) in the number of tokens. This is fine for
command lines but the accessors should not be called in hot loops. None of the accessors modifies the tokens.
"""

import pathlib
import re
import threading
from typing import Callable, Sequence

import numpy as np


# Both patterns must match the complete token.
OPTION_PATTERN = re.compile(r"--.*")
INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


class ArgumentFormatError(ValueError):
    """The value token following a key cannot be converted to the requested type."""


class MissingArgumentValueError(IndexError):
    """A value-bearing key is the last token, i.e., there is no value to parse."""


class ArgsCache:
    """
    Caller-owned cache for the results of ``parse_args`` and ``parse_flags``.

    Entries are keyed by a snapshot of the token contents, so two distinct but equal token sequences share an entry.
    Entries are never evicted. Access is guarded by a lock.

    Attributes
    ----------
    arguments : dict[tuple[str, ...], frozenset[str]]
        Cached results of ``parse_args``.
    flags : dict[tuple[str, ...], frozenset[str]]
        Cached results of ``parse_flags``.
    """

    def __init__(self) -> None:
        """Create an empty cache."""
        self.arguments: dict[tuple[str, ...], frozenset[str]] = {}
        self.flags: dict[tuple[str, ...], frozenset[str]] = {}
        self._lock = threading.Lock()

    def get_or_compute(
        self,
        table: dict[tuple[str, ...], frozenset[str]],
        tokens: Sequence[str],
        compute: Callable[[Sequence[str]], frozenset[str]],
    ) -> frozenset[str]:
        """
        Return the cached entry for ``tokens`` in ``table`` or compute and store it.

        Parameters
        ----------
        table : dict[tuple[str, ...], frozenset[str]]
            The cache table to use, i.e., ``arguments`` or ``flags``.
        tokens : Sequence[str]
            The command-line tokens.
        compute : Callable[[Sequence[str]], frozenset[str]]
            Function computing the entry on a cache miss.

        Returns
        -------
        frozenset[str]
            The cached or freshly computed entry.
        """
        key = tuple(tokens)
        with self._lock:
            if key not in table:
                table[key] = compute(key)
            return table[key]

    def clear(self) -> None:
        """Drop all cached entries."""
        with self._lock:
            self.arguments.clear()
            self.flags.clear()


def is_option(token: str) -> bool:
    """
    Check whether a token looks like an option, i.e., starts with ``--``.

    Parameters
    ----------
    token : str
        The token to check.

    Returns
    -------
    bool
        True if the token matches ``^--.*``.
    """
    return OPTION_PATTERN.fullmatch(token) is not None


def normalize_key(key: str) -> str:
    """
    Prepend ``--`` to the key unless it already starts with it.

    Parameters
    ----------
    key : str
        The option name, with or without leading ``--``.

    Returns
    -------
    str
        The option name with leading ``--``.
    """
    return key if key.startswith("--") else "--" + key


def _value_after(tokens: Sequence[str], index: int) -> str:
    # Value-bearing keys need a following token.
    if index + 1 >= len(tokens):
        raise MissingArgumentValueError(
            f"Option {tokens[index]} at position {index} expects a value but is the last token."
        )
    return tokens[index + 1]


def _first_value(tokens: Sequence[str], key: str) -> str | None:
    key = normalize_key(key)
    for i, token in enumerate(tokens):
        if token == key:
            return _value_after(tokens, i)
    return None


def _all_values(tokens: Sequence[str], key: str) -> list[str]:
    key = normalize_key(key)
    return [_value_after(tokens, i) for i, token in enumerate(tokens) if token == key]


def _to_bounded_integer(key: str, value: str, bits: int) -> int:
    if INTEGER_PATTERN.fullmatch(value) is None:
        raise ArgumentFormatError(f"Value {value!r} of {normalize_key(key)} is not an integer.")
    number = int(value)
    lower, upper = -(2 ** (bits - 1)), 2 ** (bits - 1) - 1
    if not lower <= number <= upper:
        raise ArgumentFormatError(
            f"Value {value!r} of {normalize_key(key)} is out of the {bits}-bit integer range [{lower}, {upper}]."
        )
    return number


def _to_float(key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as e:
        raise ArgumentFormatError(f"Value {value!r} of {normalize_key(key)} is not a number.") from e


def _compute_args(tokens: Sequence[str]) -> frozenset[str]:
    return frozenset(token[2:] for token in tokens if is_option(token))


def _compute_flags(tokens: Sequence[str]) -> frozenset[str]:
    return frozenset(
        token[2:]
        for i, token in enumerate(tokens)
        if is_option(token) and (i == len(tokens) - 1 or is_option(tokens[i + 1]))
    )


def parse_args(tokens: Sequence[str], cache: ArgsCache | None = None) -> set[str]:
    """
    Return the names of all options present in the tokens.

    Similar to ``parse_flags`` but without any restriction on the following token.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    cache : ArgsCache, optional
        Cache to look the result up in and store it to.

    Returns
    -------
    set[str]
        The name of every token starting with ``--``, without the leading ``--``.
    """
    if cache is None:
        return set(_compute_args(tokens))
    return set(cache.get_or_compute(cache.arguments, tokens, _compute_args))


def parse_flags(tokens: Sequence[str], cache: ArgsCache | None = None) -> set[str]:
    """
    Return the names of all flags present in the tokens.

    Flags are options taking no value, i.e., options followed by another option (e.g. ``--foo --bar quux``) or by the
    end of the command line.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    cache : ArgsCache, optional
        Cache to look the result up in and store it to.

    Returns
    -------
    set[str]
        The flag names without the leading ``--``.
    """
    if cache is None:
        return set(_compute_flags(tokens))
    return set(cache.get_or_compute(cache.flags, tokens, _compute_flags))


def parse_integer(tokens: Sequence[str], key: str, default: int) -> int:
    """
    Parse the 32-bit integer value of the option ``key``.

    If the key is present multiple times, the first occurrence wins. For example,
    ``parse_integer(["--minimum", "1.3", "--foo", "50"], "foo", 10)`` returns 50.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    key : str
        The option name, with or without leading ``--``.
    default : int
        The value returned if the key is absent.

    Returns
    -------
    int
        The parsed value or ``default``.

    Raises
    ------
    ArgumentFormatError
        If the value is not a 32-bit integer.
    MissingArgumentValueError
        If the key is the last token.
    """
    value = _first_value(tokens, key)
    return default if value is None else _to_bounded_integer(key, value, 32)


def parse_long(tokens: Sequence[str], key: str, default: int) -> int:
    """Parse the 64-bit integer value of the option ``key``, see ``parse_integer``."""
    value = _first_value(tokens, key)
    return default if value is None else _to_bounded_integer(key, value, 64)


def parse_float(tokens: Sequence[str], key: str, default: float) -> np.float32:
    """Parse the single-precision value of the option ``key``, see ``parse_integer``."""
    value = _first_value(tokens, key)
    return np.float32(default if value is None else _to_float(key, value))


def parse_double(tokens: Sequence[str], key: str, default: float) -> float:
    """Parse the double-precision value of the option ``key``, see ``parse_integer``."""
    value = _first_value(tokens, key)
    return default if value is None else _to_float(key, value)


def parse_string(tokens: Sequence[str], key: str, default: str) -> str:
    """Return the token following the first occurrence of ``key`` verbatim, see ``parse_integer``."""
    value = _first_value(tokens, key)
    return default if value is None else value


def parse_integers(tokens: Sequence[str], key: str) -> list[int]:
    """
    Parse the values of all occurrences of the option ``key`` as integers.

    For example, ``parse_integers(["--foo", "3", "--min", "2.5", "--foo", "4"], "foo")`` returns ``[3, 4]``.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    key : str
        The option name, with or without leading ``--``.

    Returns
    -------
    list[int]
        The values in order of appearance, empty if the key is absent.
    """
    return [_to_bounded_integer(key, value, 32) for value in _all_values(tokens, key)]


def parse_doubles(tokens: Sequence[str], key: str) -> list[float]:
    """
    Parse the values of all occurrences of the option ``key`` as floats.

    For example, ``parse_doubles(["--foo", "3.2", "--min", "2.5", "--foo", "4.3"], "foo")`` returns ``[3.2, 4.3]``.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    key : str
        The option name, with or without leading ``--``.

    Returns
    -------
    list[float]
        The values in order of appearance, empty if the key is absent.
    """
    return [_to_float(key, value) for value in _all_values(tokens, key)]


def parse_strings(tokens: Sequence[str], key: str) -> list[str]:
    """Return the values of all occurrences of the option ``key``, see ``parse_integers``."""
    return _all_values(tokens, key)


def parse_list(tokens: Sequence[str], key: str) -> list[str]:
    """
    Return all values preceded by the option ``key``.

    For example, ``--input foo.txt --input bar.txt --input baz.txt`` gives ``["foo.txt", "bar.txt", "baz.txt"]`` for
    the key "input".
    """
    return _all_values(tokens, key)


def parse_file_handles(tokens: Sequence[str], key: str) -> list[pathlib.Path]:
    """
    Return the values of all occurrences of the option ``key`` as paths.

    Whether the files exist is not checked.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.
    key : str
        The option name, with or without leading ``--``.

    Returns
    -------
    list[pathlib.Path]
        The paths in order of appearance.
    """
    return [pathlib.Path(value) for value in _all_values(tokens, key)]


def parse_file(tokens: Sequence[str]) -> list[str]:
    """
    Parse file names from the command line.

    A file name is either the token following ``--file`` or any token after a bare ``--``. For example,
    ``--max 10 --min 3 -- foo.txt bar.txt baz.txt`` gives ``["foo.txt", "bar.txt", "baz.txt"]``. Scanning stops at the
    first ``--``.

    Parameters
    ----------
    tokens : Sequence[str]
        The command-line tokens.

    Returns
    -------
    list[str]
        The file names in order of appearance.
    """
    output = []
    i = 0
    while i < len(tokens):
        if tokens[i] == "--file":
            output.append(_value_after(tokens, i))
            i += 1
        if tokens[i] == "--":
            output.extend(tokens[i + 1 :])
            break
        i += 1
    return output
