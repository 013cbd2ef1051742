"""
comparison operators understood by the comparator circuit.

the integer codes are part of the circuit interface: renumbering them needs a
new circuit and a bump of OPERATOR_TABLE_VERSION.
"""

import enum
import operator as _op
from typing import Union

from zksbt.errors import InvalidOperatorCode

OPERATOR_TABLE_VERSION = 1


class Operator(enum.IntEnum):
    EQ = 0
    NEQ = 1
    GT = 2
    GTE = 3
    LT = 4
    LTE = 5

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]

    def holds(self, value: int, threshold: int) -> bool:
        """evaluate `value <op> threshold`"""
        return _RULES[self](value, threshold)

    @classmethod
    def parse(cls, value: Union["Operator", int, str]) -> "Operator":
        """accept a code (3), a name ("gte") or a symbol (">=")"""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise InvalidOperatorCode(f"invalid operator: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError as exc:
                raise InvalidOperatorCode(f"operator code {value} is not in 0..5") from exc
        if isinstance(value, str):
            key = value.strip()
            if key.isdigit():
                return cls.parse(int(key))
            if key.upper() in cls.__members__:
                return cls[key.upper()]
            for member, symbol in _SYMBOLS.items():
                if symbol == key:
                    return member
        raise InvalidOperatorCode(f"invalid operator: {value!r}")


_RULES = {
    Operator.EQ: _op.eq,
    Operator.NEQ: _op.ne,
    Operator.GT: _op.gt,
    Operator.GTE: _op.ge,
    Operator.LT: _op.lt,
    Operator.LTE: _op.le,
}

_SYMBOLS = {
    Operator.EQ: "==",
    Operator.NEQ: "!=",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}
