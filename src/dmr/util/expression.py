"""
Mapping expressions between access-template attributes and raw properties.

Grammar:
    expression := METHOD "(" arg ("," arg)* ")"
    arg        := "x" ID | NUMBER

METHOD is one of equal, sum, product, subtraction, ratio. A lone `x<ID>` is
read as `equal(x<ID>)`.

Examples:
    parse_expression("product(x1,x2,10)")  -> product, args ["1", "2"], nums ["10"]
    exec_mapping("sum", ["1.01", "0.99"], "int64")  -> 1
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable

from dmr.exception import (
    ConfigIdNotExistError,
    DivisorZeroError,
    InvalidExpressionArgsError,
    InvalidExpressionError,
    PropertyValueNotExistError,
    UnknownExpressionMethodError,
    UnknownPropertyIdError,
    UnsupportedArgTypeError,
)
from dmr.model.enum.property_type_enum import (
    INTEGER_TYPES,
    NUMERIC_TYPES,
    MappingType,
    PropertyType,
)
from dmr.schema.access_template_schema import AccessTemplate
from dmr.util.value_parser import narrow_float, to_float32

logger = logging.getLogger("Expression")

METHOD_EQUAL = "equal"
METHOD_SUM = "sum"
METHOD_PRODUCT = "product"
METHOD_SUBTRACTION = "subtraction"
METHOD_RATIO = "ratio"

EXPRESSION_METHODS: frozenset[str] = frozenset(
    {METHOD_EQUAL, METHOD_SUM, METHOD_PRODUCT, METHOD_SUBTRACTION, METHOD_RATIO}
)

OPERAND_ARG = "arg"
OPERAND_NUM = "num"

_EXPRESSION_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)\s*$", re.DOTALL)
_ARG_RE = re.compile(r"^x([A-Za-z0-9_\-]+)$")
_NUM_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

SUBTRACTION_DIGITS = 4


@dataclass(frozen=True)
class ParsedExpression:
    method: str
    args: list[str] = field(default_factory=list)
    nums: list[str] = field(default_factory=list)
    # (OPERAND_ARG | OPERAND_NUM, token) in source order
    operands: tuple[tuple[str, str], ...] = ()


def parse_expression(expression: str) -> ParsedExpression:
    # a lone reference is shorthand for equal(x<ID>)
    bare = _ARG_RE.match((expression or "").strip())
    if bare:
        return ParsedExpression(method=METHOD_EQUAL, args=[bare.group(1)], operands=((OPERAND_ARG, bare.group(1)),))

    match = _EXPRESSION_RE.match(expression or "")
    if not match:
        raise InvalidExpressionError(f"invalid expression: {expression!r}")

    method, body = match.group(1), match.group(2)
    if method not in EXPRESSION_METHODS:
        raise UnknownExpressionMethodError(f"unknown expression method: {method}")

    args: list[str] = []
    nums: list[str] = []
    operands: list[tuple[str, str]] = []
    for token in body.split(","):
        token = token.strip()
        arg_match = _ARG_RE.match(token)
        if arg_match:
            args.append(arg_match.group(1))
            operands.append((OPERAND_ARG, arg_match.group(1)))
            continue
        if _NUM_RE.match(token):
            nums.append(token)
            operands.append((OPERAND_NUM, token))
            continue
        raise InvalidExpressionArgsError(f"invalid expression argument {token!r} in {expression!r}")

    return ParsedExpression(method=method, args=args, nums=nums, operands=tuple(operands))


# ----------------------------
# Evaluation
# ----------------------------


def _to_float64(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError) as e:
        raise InvalidExpressionArgsError(f"argument {raw!r} is not a number") from e
    if not math.isfinite(value):
        raise InvalidExpressionArgsError(f"argument {raw!r} is not finite")
    return value


def _to_operand(raw: Any, ptype: PropertyType) -> float:
    """Parse one argument as float64, then narrow it the way the result type will be."""
    value = _to_float64(raw)
    if ptype in INTEGER_TYPES:
        return float(math.trunc(value))
    if ptype == PropertyType.FLOAT32:
        return to_float32(value)
    return value


def _narrow(ptype: PropertyType, value: float) -> int | float:
    if ptype == PropertyType.FLOAT32:
        return to_float32(value)
    return narrow_float(ptype, value)


def _accumulate(ptype: PropertyType, operands: list[float], zero: float, op: Callable[[float, float], float]):
    acc = zero
    for operand in operands:
        acc = op(acc, operand)
        if ptype == PropertyType.FLOAT32:
            acc = to_float32(acc)
    return _narrow(ptype, acc)


def _check_arity(method: str, args: list, *, exact: int | None = None, minimum: int | None = None) -> None:
    if exact is not None and len(args) != exact:
        raise InvalidExpressionArgsError(f"{method} requires exactly {exact} args, got {len(args)}")
    if minimum is not None and len(args) < minimum:
        raise InvalidExpressionArgsError(f"{method} requires at least {minimum} args, got {len(args)}")


def _result_type(result_type: str) -> PropertyType:
    ptype = PropertyType.from_string(str(result_type))
    if ptype is None or ptype not in NUMERIC_TYPES:
        raise UnsupportedArgTypeError(f"unsupported result type: {result_type}")
    return ptype


def exec_mapping(method: str, args: list[Any], result_type: str) -> Any:
    """
    Evaluate one mapping method over string (or numeric) arguments.

    sum and product narrow every operand to the result type before it is
    accumulated (integers truncate toward zero, float32 rounds). subtraction
    and ratio compute on float64 and narrow only the result.
    """
    if method == METHOD_EQUAL:
        _check_arity(method, args, exact=1)
        return args[0]

    if method in (METHOD_SUM, METHOD_PRODUCT):
        _check_arity(method, args, minimum=2)
        ptype = _result_type(result_type)
        operands = [_to_operand(arg, ptype) for arg in args]
        if method == METHOD_SUM:
            return _accumulate(ptype, operands, 0.0, lambda a, b: a + b)
        return _accumulate(ptype, operands, 1.0, lambda a, b: a * b)

    if method == METHOD_SUBTRACTION:
        _check_arity(method, args, exact=2)
        ptype = _result_type(result_type)
        minuend, subtrahend = (_to_float64(arg) for arg in args)
        result = minuend - subtrahend
        if ptype not in INTEGER_TYPES:
            result = float(f"{result:.{SUBTRACTION_DIGITS}f}")
        return _narrow(ptype, result)

    if method == METHOD_RATIO:
        _check_arity(method, args, exact=2)
        ptype = _result_type(result_type)
        divisor = _to_float64(args[1])
        if divisor == 0:
            raise DivisorZeroError(f"ratio divisor is zero: {args[1]!r}")
        dividend = _to_float64(args[0])
        return _narrow(ptype, dividend / divisor)

    raise UnknownExpressionMethodError(f"unknown expression method: {method}")


# ----------------------------
# Template helpers
# ----------------------------


def get_mapping_name(property_id: str, template: AccessTemplate) -> str:
    """Return the name of the template property with the given id."""
    prop = template.find_property(property_id)
    if prop is None:
        raise UnknownPropertyIdError(f"property id {property_id!r} not in template {template.name!r}")
    return prop.name


def get_config_id_by_model_name(attribute: str, template: AccessTemplate) -> str:
    """Return the first property id referenced by the mapping of `attribute`."""
    mapping = template.find_mapping(attribute)
    if mapping is None:
        raise ConfigIdNotExistError(f"no mapping for attribute {attribute!r} in template {template.name!r}")
    parsed = parse_expression(mapping.expression)
    if not parsed.args:
        raise ConfigIdNotExistError(f"mapping of attribute {attribute!r} references no property")
    return parsed.args[0]


def get_prop_value_by_model_name(attribute: str, value: Any, template: AccessTemplate) -> Any:
    """
    Apply the mapping of `attribute` to a single raw value.

    A `value` mapping passes the raw value through. Any other mapping is
    evaluated with `value` substituted for every property reference; the
    result is narrowed to the referenced property's type (float64 when it is
    not numeric).
    """
    mapping = template.find_mapping(attribute)
    if mapping is None:
        raise PropertyValueNotExistError(f"no mapping for attribute {attribute!r} in template {template.name!r}")
    if mapping.type == MappingType.VALUE:
        return value

    parsed = parse_expression(mapping.expression)
    if not parsed.args:
        raise PropertyValueNotExistError(f"mapping of attribute {attribute!r} references no property")

    result_type = PropertyType.FLOAT64
    prop = template.find_property(parsed.args[0])
    if prop is not None and prop.type in NUMERIC_TYPES:
        result_type = prop.type

    operands = [value if kind == OPERAND_ARG else token for kind, token in parsed.operands]
    logger.debug(f"[Expression] {attribute}: {parsed.method}{operands} -> {result_type}")
    return exec_mapping(parsed.method, operands, result_type)
