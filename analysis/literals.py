"""
Literal typing and typed constant folding.

Integer types follow the literal's suffix and value range with the LP64 data
model. A literal whose type would differ under LLP64 is widened to
``long long`` and reported with MEDIUM confidence.
"""

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Tuple, Union

from analysis.config import NULL_POINTER_NAMES
from analysis.expressions import Expr, ExprKind, side_effect_of
from core.proposal_contract import Confidence, lower_confidence
from preprocessor.models import Token, TokenKind

logger = logging.getLogger(__name__)


class ValueCategory(str, Enum):
    INTEGRAL = "integral"
    FLOATING = "floating"
    STRING = "string"
    POINTER = "pointer"


@dataclass(frozen=True)
class TypedValue:
    """Folded value of a constant expression.

    ``value`` is None when the expression is constant but its value depends on
    the target (``sizeof``) or is a string/pointer.
    """

    type_name: Optional[str]
    category: ValueCategory
    value: Union[int, float, None] = None
    confidence: Confidence = Confidence.HIGH
    evidence: Tuple[str, ...] = ()

    @property
    def is_integral(self) -> bool:
        return self.category is ValueCategory.INTEGRAL

    @property
    def is_arithmetic(self) -> bool:
        return self.category in (ValueCategory.INTEGRAL, ValueCategory.FLOATING)


class NotConstantFoldable(ValueError):
    """Raised when an expression is not a side-effect-free constant."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


NameResolver = Callable[[str], TypedValue]


@dataclass(frozen=True)
class _IntegerType:
    bits: int
    signed: bool
    rank: int


# LP64 sizes; ``long`` is 32 bits under LLP64.
INTEGER_TYPES: Dict[str, _IntegerType] = {
    "bool": _IntegerType(1, False, 0),
    "char": _IntegerType(8, True, 1),
    "signed char": _IntegerType(8, True, 1),
    "unsigned char": _IntegerType(8, False, 1),
    "char8_t": _IntegerType(8, False, 1),
    "short": _IntegerType(16, True, 2),
    "unsigned short": _IntegerType(16, False, 2),
    "char16_t": _IntegerType(16, False, 2),
    "int": _IntegerType(32, True, 3),
    "unsigned int": _IntegerType(32, False, 3),
    "wchar_t": _IntegerType(32, True, 3),
    "char32_t": _IntegerType(32, False, 3),
    "long": _IntegerType(64, True, 4),
    "unsigned long": _IntegerType(64, False, 4),
    "long long": _IntegerType(64, True, 5),
    "unsigned long long": _IntegerType(64, False, 5),
    "std::size_t": _IntegerType(64, False, 4),
}
_LLP64_BITS = {"long": 32, "unsigned long": 32}

FLOATING_RANK: Dict[str, int] = {"float": 1, "double": 2, "long double": 3}

_PROMOTED = {
    "bool": "int",
    "char": "int",
    "signed char": "int",
    "unsigned char": "int",
    "char8_t": "int",
    "short": "int",
    "unsigned short": "int",
    "char16_t": "int",
    "wchar_t": "int",
    "char32_t": "unsigned int",
}

_CHAR_PREFIX_TYPES = {
    "": "char",
    "L": "wchar_t",
    "u8": "char8_t",
    "u": "char16_t",
    "U": "char32_t",
}

STRING_TYPES = {
    "char": "std::string",
    "wchar_t": "std::wstring",
    "char8_t": "std::u8string",
    "char16_t": "std::u16string",
    "char32_t": "std::u32string",
}

_INTEGER_RE = re.compile(
    r"^(?P<digits>0[xX][0-9a-fA-F]+|0[bB][01]+|0[0-7]*|[1-9][0-9]*)(?P<suffix>[uUlL]*)$"
)
_DECIMAL_FLOAT_RE = re.compile(
    r"^(?P<body>(?:[0-9]+\.[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|[0-9]+[eE][+-]?[0-9]+)(?P<suffix>[fFlL]?)$"
)
_HEX_FLOAT_RE = re.compile(
    r"^(?P<body>0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)[pP][+-]?[0-9]+)(?P<suffix>[fFlL]?)$"
)

# Candidate types per (suffix, decimal) in the order the standard tries them.
_SUFFIX_CANDIDATES = {
    ("", True): ("int", "long", "long long"),
    ("", False): ("int", "unsigned int", "long", "unsigned long", "long long", "unsigned long long"),
    ("u", True): ("unsigned int", "unsigned long", "unsigned long long"),
    ("u", False): ("unsigned int", "unsigned long", "unsigned long long"),
    ("l", True): ("long", "long long"),
    ("l", False): ("long", "unsigned long", "long long", "unsigned long long"),
    ("ul", True): ("unsigned long", "unsigned long long"),
    ("ul", False): ("unsigned long", "unsigned long long"),
    ("ll", True): ("long long",),
    ("ll", False): ("long long", "unsigned long long"),
    ("ull", True): ("unsigned long long",),
    ("ull", False): ("unsigned long long",),
}

_SIMPLE_ESCAPES = {
    "n": 10, "t": 9, "r": 13, "a": 7, "b": 8, "f": 12, "v": 11,
    "\\": 92, "'": 39, '"': 34, "?": 63,
}


def _bits(type_name: str, llp64: bool = False) -> int:
    if llp64 and type_name in _LLP64_BITS:
        return _LLP64_BITS[type_name]
    return INTEGER_TYPES[type_name].bits


def _fits(value: int, type_name: str, llp64: bool = False) -> bool:
    bits = _bits(type_name, llp64)
    if INTEGER_TYPES[type_name].signed:
        return value < (1 << (bits - 1))
    return value < (1 << bits)


def _normalize_integer_suffix(suffix: str) -> Optional[str]:
    if suffix in ("lL", "Ll") or "lL" in suffix or "Ll" in suffix:
        return None
    lowered = suffix.lower()
    unsigned = "u" in lowered
    length = lowered.replace("u", "")
    if lowered.count("u") > 1 or length not in ("", "l", "ll"):
        return None
    if unsigned and not (lowered.startswith("u") or lowered.endswith("u")):
        return None
    return ("u" if unsigned else "") + length


def type_integer_literal(lexeme: str) -> TypedValue:
    """Type an integer literal.

    Raises:
        NotConstantFoldable: For malformed, user-defined or oversized literals.
    """
    text = lexeme.replace("'", "")
    match = _INTEGER_RE.match(text)
    if match is None:
        raise NotConstantFoldable(f"unsupported integer literal '{lexeme}'")
    digits = match.group("digits")
    suffix = _normalize_integer_suffix(match.group("suffix"))
    if suffix is None:
        raise NotConstantFoldable(f"invalid integer suffix in '{lexeme}'")

    if digits[:2] in ("0x", "0X"):
        value, decimal = int(digits[2:], 16), False
    elif digits[:2] in ("0b", "0B"):
        value, decimal = int(digits[2:], 2), False
    elif digits.startswith("0"):
        value, decimal = int(digits, 8), False
    else:
        value, decimal = int(digits), True

    candidates = _SUFFIX_CANDIDATES[(suffix, decimal)]
    lp64 = next((name for name in candidates if _fits(value, name)), None)
    llp64 = next((name for name in candidates if _fits(value, name, llp64=True)), None)
    if lp64 is None:
        raise NotConstantFoldable(f"integer literal '{lexeme}' is too large for any integer type")
    if lp64 == llp64:
        return TypedValue(lp64, ValueCategory.INTEGRAL, value)

    widened = "unsigned long long" if not INTEGER_TYPES[lp64].signed else "long long"
    return TypedValue(
        widened,
        ValueCategory.INTEGRAL,
        value,
        Confidence.MEDIUM,
        (f"literal {lexeme} is '{lp64}' under LP64 but '{llp64}' under LLP64; widened to '{widened}'",),
    )


def type_floating_literal(lexeme: str) -> TypedValue:
    """Type a floating literal: ``double`` unless suffixed."""
    text = lexeme.replace("'", "")
    match = _DECIMAL_FLOAT_RE.match(text) or _HEX_FLOAT_RE.match(text)
    if match is None:
        raise NotConstantFoldable(f"unsupported floating literal '{lexeme}'")
    body, suffix = match.group("body"), match.group("suffix").lower()
    value = float.fromhex(body) if body[:2] in ("0x", "0X") else float(body)
    type_name = {"": "double", "f": "float", "l": "long double"}[suffix]
    return TypedValue(type_name, ValueCategory.FLOATING, value)


def type_number_literal(lexeme: str) -> TypedValue:
    text = lexeme.replace("'", "")
    is_hex = text[:2] in ("0x", "0X")
    if (is_hex and ("p" in text or "P" in text)) or (
        not is_hex and ("." in text or "e" in text or "E" in text)
    ):
        return type_floating_literal(lexeme)
    return type_integer_literal(lexeme)


def _split_prefix(lexeme: str, quote: str) -> Tuple[str, str]:
    index = lexeme.index(quote)
    return lexeme[:index], lexeme[index:]


def _decode_char_body(body: str, lexeme: str) -> int:
    if body.startswith("\\"):
        escape = body[1:]
        if escape in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[escape]
        if escape[:1] in ("x", "u", "U") and len(escape) > 1:
            try:
                return int(escape[1:], 16)
            except ValueError:
                pass
        elif re.fullmatch(r"[0-7]{1,3}", escape):
            return int(escape, 8)
        raise NotConstantFoldable(f"unsupported escape sequence in {lexeme}")
    if len(body) != 1:
        raise NotConstantFoldable(f"multicharacter literal {lexeme}")
    return ord(body)


def type_char_literal(lexeme: str) -> TypedValue:
    """Type a character literal by its encoding prefix."""
    prefix, quoted = _split_prefix(lexeme, "'")
    if prefix not in _CHAR_PREFIX_TYPES or len(quoted) < 3:
        raise NotConstantFoldable(f"unsupported character literal {lexeme}")
    value = _decode_char_body(quoted[1:-1], lexeme)
    return TypedValue(_CHAR_PREFIX_TYPES[prefix], ValueCategory.INTEGRAL, value)


def type_string_literal(tokens: Sequence[Token]) -> TypedValue:
    """Type a (possibly concatenated) string literal by its character type."""
    prefixes = set()
    for token in tokens:
        prefix, _ = _split_prefix(token.lexeme, '"')
        prefix = prefix[:-1] if prefix.endswith("R") else prefix
        if prefix not in _CHAR_PREFIX_TYPES:
            raise NotConstantFoldable(f"unsupported string literal {token.lexeme}")
        if prefix:
            prefixes.add(prefix)
    if len(prefixes) > 1:
        raise NotConstantFoldable("concatenated string literals with different encodings")
    char_type = _CHAR_PREFIX_TYPES[prefixes.pop() if prefixes else ""]
    return TypedValue(char_type, ValueCategory.STRING)


def promote(type_name: str) -> str:
    return _PROMOTED.get(type_name, type_name)


def _unsigned_of(type_name: str) -> str:
    return type_name if type_name.startswith("unsigned") else f"unsigned {type_name}"


def common_integer_type(left: str, right: str) -> str:
    """Usual arithmetic conversions for two integral operands."""
    left, right = promote(left), promote(right)
    if left == right:
        return left
    a, b = INTEGER_TYPES[left], INTEGER_TYPES[right]
    if a.signed == b.signed:
        return left if a.rank >= b.rank else right
    unsigned, signed = (left, right) if not a.signed else (right, left)
    u, s = INTEGER_TYPES[unsigned], INTEGER_TYPES[signed]
    if u.rank >= s.rank:
        return unsigned
    if s.bits > u.bits:
        return signed
    return _unsigned_of(signed)


def common_type(left: TypedValue, right: TypedValue) -> str:
    if left.category is ValueCategory.FLOATING or right.category is ValueCategory.FLOATING:
        ranks = [
            FLOATING_RANK.get(operand.type_name, 0)
            for operand in (left, right)
            if operand.category is ValueCategory.FLOATING
        ]
        best = max(ranks)
        return next(name for name, rank in FLOATING_RANK.items() if rank == best)
    return common_integer_type(left.type_name, right.type_name)


def _wrap(value: Optional[Union[int, float]], type_name: str) -> Optional[Union[int, float]]:
    if value is None or type_name in FLOATING_RANK:
        return value
    if type_name == "bool":
        return int(bool(value))
    info = INTEGER_TYPES[type_name]
    if not info.signed:
        return int(value) % (1 << info.bits)
    lower, upper = -(1 << (info.bits - 1)), (1 << (info.bits - 1)) - 1
    if not lower <= value <= upper:
        raise NotConstantFoldable(f"signed overflow in constant expression ({type_name})")
    return int(value)


def canonical_arithmetic_type(words: Sequence[str]) -> str:
    """Normalize a builtin type keyword sequence (``unsigned long int``)."""
    filtered = [word for word in words if word not in ("const", "volatile")]
    if any(word in ("*", "&") for word in filtered):
        raise NotConstantFoldable("cast to pointer or reference type")
    signed = "signed" in filtered
    unsigned = "unsigned" in filtered
    longs = filtered.count("long")
    rest = [word for word in filtered if word not in ("signed", "unsigned", "long", "int")]
    if rest == ["double"]:
        return "long double" if longs else "double"
    if rest in (["float"], ["bool"], ["wchar_t"], ["char8_t"], ["char16_t"], ["char32_t"]):
        return rest[0]
    if rest == ["char"]:
        return "unsigned char" if unsigned else ("signed char" if signed else "char")
    if rest == ["short"]:
        base = "short"
    elif rest == [] and longs == 2:
        base = "long long"
    elif rest == [] and longs == 1:
        base = "long"
    elif rest == []:
        base = "int"
    else:
        raise NotConstantFoldable(f"unsupported cast type '{' '.join(words)}'")
    return _unsigned_of(base) if unsigned else base


def _merge(result: TypedValue, *operands: TypedValue) -> TypedValue:
    confidence = result.confidence
    evidence = list(result.evidence)
    for operand in operands:
        confidence = lower_confidence(confidence, operand.confidence)
        evidence.extend(item for item in operand.evidence if item not in evidence)
    return replace(result, confidence=confidence, evidence=tuple(evidence))


def _truncating_divide(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b >= 0) else -quotient


class ConstantFolder:
    """Fold an expression tree to a TypedValue.

    Args:
        resolve_name: Callback resolving identifiers to the folded value of
            another constant macro; raises NotConstantFoldable otherwise.
    """

    def __init__(self, resolve_name: Optional[NameResolver] = None) -> None:
        self._resolve_name = resolve_name

    def fold(self, expr: Expr) -> TypedValue:
        handler = getattr(self, f"_fold_{expr.kind.value}", None)
        if handler is None:
            effect = side_effect_of(expr)
            if effect is not None:
                raise NotConstantFoldable(f"side effect: {effect}")
            raise NotConstantFoldable(f"{expr.kind.value} expression is not a constant")
        return handler(expr)

    def _fold_literal(self, expr: Expr) -> TypedValue:
        token = expr.tokens[0]
        if token.kind is TokenKind.NUMBER:
            return type_number_literal(token.lexeme)
        if token.kind is TokenKind.CHAR:
            return type_char_literal(token.lexeme)
        return type_string_literal(expr.tokens)

    def _fold_name(self, expr: Expr) -> TypedValue:
        name = expr.op
        if name in ("true", "false"):
            return TypedValue("bool", ValueCategory.INTEGRAL, int(name == "true"))
        if name in NULL_POINTER_NAMES:
            return TypedValue(
                None,
                ValueCategory.POINTER,
                confidence=Confidence.UNREWRITABLE,
                evidence=(f"null pointer constant '{name}' has no known pointee type",),
            )
        if "::" in name or self._resolve_name is None:
            raise NotConstantFoldable(f"references non-macro identifier '{name}'")
        return self._resolve_name(name)

    def _fold_paren(self, expr: Expr) -> TypedValue:
        return self.fold(expr.children[0])

    def _fold_sizeof(self, expr: Expr) -> TypedValue:
        return TypedValue(
            "std::size_t",
            ValueCategory.INTEGRAL,
            None,
            Confidence.MEDIUM,
            (f"{expr.op} result depends on the target",),
        )

    def _arithmetic(self, operand: TypedValue, op: str) -> TypedValue:
        if not operand.is_arithmetic:
            raise NotConstantFoldable(f"operator '{op}' applied to a {operand.category.value}")
        return operand

    def _fold_unary(self, expr: Expr) -> TypedValue:
        if expr.op in ("++", "--"):
            raise NotConstantFoldable(f"side effect: increment/decrement '{expr.op}'")
        if expr.op in ("*", "&"):
            raise NotConstantFoldable(f"pointer operator '{expr.op}'")
        operand = self._arithmetic(self.fold(expr.children[0]), expr.op)
        value = operand.value
        if expr.op == "!":
            result = TypedValue("bool", ValueCategory.INTEGRAL, None if value is None else int(not value))
            return _merge(result, operand)
        if operand.category is ValueCategory.FLOATING:
            if expr.op == "~":
                raise NotConstantFoldable("operator '~' applied to a floating value")
            result_type = operand.type_name
        else:
            result_type = promote(operand.type_name)
        if value is not None:
            value = {"+": value, "-": -value}.get(expr.op, ~value if isinstance(value, int) else None)
        return _merge(TypedValue(result_type, operand.category, _wrap(value, result_type)), operand)

    def _fold_cast(self, expr: Expr) -> TypedValue:
        target = canonical_arithmetic_type(expr.op.split())
        operand = self._arithmetic(self.fold(expr.children[0]), "cast")
        value = operand.value
        if value is not None:
            if target in FLOATING_RANK:
                value = float(value)
            elif target == "bool":
                value = int(bool(value))
            else:
                value = int(value)
                info = INTEGER_TYPES[target]
                value %= 1 << info.bits
                if info.signed and value >= 1 << (info.bits - 1):
                    value -= 1 << info.bits
        category = ValueCategory.FLOATING if target in FLOATING_RANK else ValueCategory.INTEGRAL
        return _merge(TypedValue(target, category, value), operand)

    def _fold_binary(self, expr: Expr) -> TypedValue:
        op = expr.op
        left = self._arithmetic(self.fold(expr.children[0]), op)
        right = self._arithmetic(self.fold(expr.children[1]), op)
        a, b = left.value, right.value
        known = a is not None and b is not None

        if op in ("&&", "||"):
            value = None
            if known:
                value = int(bool(a) and bool(b)) if op == "&&" else int(bool(a) or bool(b))
            return _merge(TypedValue("bool", ValueCategory.INTEGRAL, value), left, right)

        if op in ("<", "<=", ">", ">=", "==", "!="):
            value = None
            if known:
                value = int({
                    "<": a < b, "<=": a <= b, ">": a > b,
                    ">=": a >= b, "==": a == b, "!=": a != b,
                }[op])
            return _merge(TypedValue("bool", ValueCategory.INTEGRAL, value), left, right)

        if op == "<=>":
            raise NotConstantFoldable("three-way comparison result is not an arithmetic constant")

        if op in ("<<", ">>"):
            if not (left.is_integral and right.is_integral):
                raise NotConstantFoldable(f"operator '{op}' applied to a floating value")
            result_type = promote(left.type_name)
            value = None
            if known:
                if b < 0 or b >= INTEGER_TYPES[result_type].bits:
                    raise NotConstantFoldable(f"shift count {b} out of range")
                if op == "<<":
                    if a < 0:
                        raise NotConstantFoldable("left shift of a negative value")
                    value = a << b
                    if INTEGER_TYPES[result_type].signed and value >= 1 << (INTEGER_TYPES[result_type].bits - 1):
                        raise NotConstantFoldable(f"signed overflow in constant expression ({result_type})")
                else:
                    value = a >> b
            return _merge(TypedValue(result_type, ValueCategory.INTEGRAL, _wrap(value, result_type)), left, right)

        result_type = common_type(left, right)
        floating = result_type in FLOATING_RANK
        if op in ("&", "|", "^", "%") and floating:
            raise NotConstantFoldable(f"operator '{op}' applied to a floating value")
        if op in ("/", "%") and b is not None and b == 0:
            raise NotConstantFoldable("division by zero")

        value = None
        if known:
            if floating:
                a, b = float(a), float(b)
            else:
                a, b = _wrap(a, result_type), _wrap(b, result_type)
            if op == "+":
                value = a + b
            elif op == "-":
                value = a - b
            elif op == "*":
                value = a * b
            elif op == "/":
                value = a / b if floating else _truncating_divide(a, b)
            elif op == "%":
                value = a - b * _truncating_divide(a, b)
            elif op == "&":
                value = a & b
            elif op == "|":
                value = a | b
            elif op == "^":
                value = a ^ b
        category = ValueCategory.FLOATING if floating else ValueCategory.INTEGRAL
        return _merge(TypedValue(result_type, category, _wrap(value, result_type)), left, right)

    def _fold_conditional(self, expr: Expr) -> TypedValue:
        condition = self._arithmetic(self.fold(expr.children[0]), "?:")
        when_true = self._arithmetic(self.fold(expr.children[1]), "?:")
        when_false = self._arithmetic(self.fold(expr.children[2]), "?:")
        result_type = common_type(when_true, when_false)
        value = None
        if condition.value is not None:
            chosen = when_true if condition.value else when_false
            value = chosen.value
            if value is not None:
                value = float(value) if result_type in FLOATING_RANK else _wrap(int(value), result_type)
        category = ValueCategory.FLOATING if result_type in FLOATING_RANK else ValueCategory.INTEGRAL
        return _merge(TypedValue(result_type, category, value), condition, when_true, when_false)

    def _fold_comma(self, expr: Expr) -> TypedValue:
        raise NotConstantFoldable("top-level comma operator")


def fold_constant(expr: Expr, resolve_name: Optional[NameResolver] = None) -> TypedValue:
    """Fold ``expr`` to a typed constant.

    Raises:
        NotConstantFoldable: With the disqualifying reason.
    """
    return ConstantFolder(resolve_name).fold(expr)
