"""
MongoDB-style filter grammar for the SQLite document store.

Documents are stored as JSON text; this module compiles the filter,
sort and projection shapes callers send into SQLite SQL over json_extract()
and json_each(), so the SQLite backend accepts the same native grammar as
the MongoDB backend.

Supported filter grammar:
    {"field": value}                     equality (matches array elements too)
    {"a.b": value}                       dotted paths, numeric segments index arrays
    {"field": {"$eq"|"$ne"|"$gt"|"$gte"|"$lt"|"$lte": value}}
    {"field": {"$in"|"$nin"|"$all": [values]}}
    {"field": {"$exists": bool}}
    {"field": {"$regex": "pattern", "$options": "imsx"}}
    {"field": {"$size": n}}
    {"field": {"$elemMatch": {...}}}
    {"field": {"$not": {...}}}
    {"$and"|"$or"|"$nor": [filters]}

Invariants:
    - Comparison operators only match values of the same type bracket
      (numbers with numbers, strings with strings), as in MongoDB
    - A null equality matches both missing fields and explicit nulls
    - Any unknown operator raises StoreQueryError; nothing is silently ignored
    - Every value reaches SQLite as a bound parameter

How to change safely:
    - Add operators in FilterCompiler._operator(); keep them NULL-safe
    - Keep sort ordering aligned with MongoDB's cross-type ordering
"""

from __future__ import annotations

import copy
import json
import re
from typing import Any, Callable

from .errors import StoreQueryError

# (value_expr, type_expr) -> SQL predicate
Predicate = Callable[[str, str], str]

_MISSING = object()

# MongoDB cross-type sort order: null < numbers < strings < objects < arrays < booleans
_SORT_TYPE_RANK = (
    "CASE {type} WHEN 'integer' THEN 1 WHEN 'real' THEN 1 WHEN 'text' THEN 2 "
    "WHEN 'object' THEN 3 WHEN 'array' THEN 4 WHEN 'false' THEN 5 WHEN 'true' THEN 5 "
    "ELSE 0 END"
)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def json_path(field_path: str) -> str:
    """Convert a dotted field path into a quoted SQLite JSON path literal.

    Example:
        >>> print(json_path("address.city"))
        '$."address"."city"'
        >>> print(json_path("tags.0"))
        '$."tags"[0]'
    """
    if not field_path or field_path.startswith("$"):
        raise StoreQueryError(f"Invalid field path '{field_path}'")

    parts = ["$"]
    for segment in field_path.split("."):
        if not segment:
            raise StoreQueryError(f"Invalid field path '{field_path}'")
        if '"' in segment or "'" in segment:
            raise StoreQueryError(f"Unsupported character in field path '{field_path}'")
        if segment.isdigit():
            parts.append(f"[{segment}]")
        else:
            parts.append(f'."{segment}"')
    return "'" + "".join(parts) + "'"


def regex_match(pattern: str, flags: str, value: Any) -> int:
    """SQL function backing $regex (registered on each connection)."""
    if not isinstance(value, str):
        return 0
    return 1 if re.search(pattern, value, _compile_flags(flags)) else 0


def _compile_flags(options: str) -> int:
    flags = 0
    for char in options or "":
        if char not in _REGEX_FLAGS:
            raise StoreQueryError(f"invalid flag in regex options: {char}")
        flags |= _REGEX_FLAGS[char]
    return flags


class FilterCompiler:
    """Compiles one filter document into a WHERE clause.

    Attributes:
        doc_expr: SQL expression holding the JSON document text
        params: Bound parameters collected during compilation, in order

    Example:
        >>> compiler = FilterCompiler("d.body_json")
        >>> sql = compiler.compile({"rating": {"$gte": 4}})
        >>> compiler.params
        [4]
    """

    def __init__(self, doc_expr: str) -> None:
        self.doc_expr = doc_expr
        self.params: list[Any] = []
        self._alias_counter = 0

    def compile(self, filter: dict[str, Any]) -> str:
        if not isinstance(filter, dict):
            raise StoreQueryError(f"Filter must be an object, got {type(filter).__name__}")
        return self._document(filter, self.doc_expr)

    # -- structure ----------------------------------------------------------

    def _document(self, filter: dict[str, Any], doc_expr: str) -> str:
        clauses = []
        for key, condition in filter.items():
            if key.startswith("$"):
                clauses.append(self._logical(key, condition, doc_expr))
            else:
                clauses.append(self._field(key, condition, doc_expr))
        if not clauses:
            return "1"
        return "(" + " AND ".join(clauses) + ")"

    def _logical(self, operator: str, condition: Any, doc_expr: str) -> str:
        if operator == "$comment":
            return "1"
        if operator not in ("$and", "$or", "$nor"):
            raise StoreQueryError(f"unknown top level operator: {operator}")
        if not isinstance(condition, list) or not condition:
            raise StoreQueryError(f"{operator} must be a nonempty array")
        for item in condition:
            if not isinstance(item, dict):
                raise StoreQueryError(f"{operator} entries must be objects")

        parts = [self._document(item, doc_expr) for item in condition]
        if operator == "$and":
            return "(" + " AND ".join(parts) + ")"
        joined = "(" + " OR ".join(parts) + ")"
        return joined if operator == "$or" else f"(NOT {joined})"

    def _field(self, field_path: str, condition: Any, doc_expr: str) -> str:
        path = json_path(field_path)
        if _is_operator_document(condition):
            return self._operators(path, condition, doc_expr)
        return self._equals(path, condition, doc_expr)

    def _operators(self, path: str, operators: dict[str, Any], doc_expr: str) -> str:
        clauses = []
        options = operators.get("$options", "")
        if "$options" in operators and "$regex" not in operators:
            raise StoreQueryError("$options needs a $regex")

        for operator, operand in operators.items():
            if operator == "$options":
                continue
            if operator == "$regex":
                clauses.append(self._regex(path, operand, options, doc_expr))
            else:
                clauses.append(self._operator(path, operator, operand, doc_expr))
        return "(" + " AND ".join(clauses) + ")"

    def _operator(self, path: str, operator: str, operand: Any, doc_expr: str) -> str:
        if operator == "$eq":
            return self._equals(path, operand, doc_expr)
        if operator == "$ne":
            return f"(NOT {self._equals(path, operand, doc_expr)})"
        if operator in ("$gt", "$gte", "$lt", "$lte"):
            return self._match(path, self._comparison(operator, operand), doc_expr)
        if operator == "$in":
            return self._in(path, operand, doc_expr)
        if operator == "$nin":
            return f"(NOT {self._in(path, operand, doc_expr)})"
        if operator == "$all":
            if not isinstance(operand, list):
                raise StoreQueryError("$all needs an array")
            if not operand:
                return "0"
            return "(" + " AND ".join(self._equals(path, v, doc_expr) for v in operand) + ")"
        if operator == "$exists":
            negate = "NOT " if operand else ""
            return f"(json_type({doc_expr}, {path}) IS {negate}NULL)"
        if operator == "$size":
            if not isinstance(operand, int) or isinstance(operand, bool) or operand < 0:
                raise StoreQueryError("$size needs a non-negative integer")
            self.params.append(operand)
            return (
                f"(json_type({doc_expr}, {path}) = 'array' "
                f"AND json_array_length({doc_expr}, {path}) = ?)"
            )
        if operator == "$elemMatch":
            return self._elem_match(path, operand, doc_expr)
        if operator == "$not":
            if not _is_operator_document(operand):
                raise StoreQueryError("$not needs a regex or a document")
            return f"(NOT {self._operators(path, operand, doc_expr)})"
        raise StoreQueryError(f"unknown operator: {operator}")

    # -- predicates ---------------------------------------------------------

    def _match(self, path: str, predicate: Predicate, doc_expr: str) -> str:
        """Match the value at path, or any element when it is an array.

        The result is never NULL, so callers can safely negate it.
        """
        alias = self._alias()
        direct = predicate(f"json_extract({doc_expr}, {path})", f"json_type({doc_expr}, {path})")
        element = predicate(f"{alias}.value", f"{alias}.type")
        return (
            f"IFNULL(({direct} OR (json_type({doc_expr}, {path}) = 'array' AND EXISTS "
            f"(SELECT 1 FROM json_each({doc_expr}, {path}) AS {alias} WHERE {element}))), 0)"
        )

    def _equals(self, path: str, value: Any, doc_expr: str) -> str:
        if value is None:
            # null matches missing fields as well as explicit nulls
            return (
                f"(json_type({doc_expr}, {path}) IS NULL OR "
                f"{self._match(path, self._scalar_equals(None), doc_expr)})"
            )
        return self._match(path, self._scalar_equals(value), doc_expr)

    def _in(self, path: str, values: Any, doc_expr: str) -> str:
        if not isinstance(values, list):
            raise StoreQueryError("$in needs an array")
        if not values:
            return "0"
        return "(" + " OR ".join(self._equals(path, v, doc_expr) for v in values) + ")"

    def _scalar_equals(self, value: Any) -> Predicate:
        if value is None:
            return lambda v, t: f"{t} = 'null'"
        if isinstance(value, bool):
            literal = "'true'" if value else "'false'"
            return lambda v, t: f"{t} = {literal}"
        if isinstance(value, (int, float)):
            return self._bound(value, "{t} IN ('integer', 'real') AND {v} = ?")
        if isinstance(value, str):
            return self._bound(value, "{t} = 'text' AND {v} = ?")
        if isinstance(value, (dict, list)):
            encoded = json.dumps(value, separators=(",", ":"))
            return self._bound(encoded, "{t} IN ('object', 'array') AND {v} = json(?)")
        raise StoreQueryError(f"Unsupported value type in filter: {type(value).__name__}")

    def _comparison(self, operator: str, operand: Any) -> Predicate:
        sql_op = {"$gt": ">", "$gte": ">=", "$lt": "<", "$lte": "<="}[operator]
        if isinstance(operand, bool) or operand is None:
            raise StoreQueryError(f"{operator} needs a number or a string")
        if isinstance(operand, (int, float)):
            return self._bound(operand, "{t} IN ('integer', 'real') AND {v} " + sql_op + " ?")
        if isinstance(operand, str):
            return self._bound(operand, "{t} = 'text' AND {v} " + sql_op + " ?")
        raise StoreQueryError(f"{operator} needs a number or a string")

    def _regex(self, path: str, pattern: Any, options: Any, doc_expr: str) -> str:
        if not isinstance(pattern, str):
            raise StoreQueryError("$regex has to be a string")
        if not isinstance(options, str):
            raise StoreQueryError("$options has to be a string")
        try:
            re.compile(pattern, _compile_flags(options))
        except re.error as e:
            raise StoreQueryError(f"Regular expression is invalid: {e}") from e

        def predicate(v: str, t: str) -> str:
            self.params.extend([pattern, options])
            return f"{t} = 'text' AND docquery_regex(?, ?, {v})"

        return self._match(path, predicate, doc_expr)

    def _elem_match(self, path: str, condition: Any, doc_expr: str) -> str:
        if not isinstance(condition, dict):
            raise StoreQueryError("$elemMatch needs an Object")
        alias = self._alias()
        if _is_operator_document(condition):
            predicate = self._element_operators(condition, alias)
        else:
            predicate = (
                f"{alias}.type = 'object' AND {self._document(condition, f'{alias}.value')}"
            )
        return (
            f"(json_type({doc_expr}, {path}) = 'array' AND EXISTS "
            f"(SELECT 1 FROM json_each({doc_expr}, {path}) AS {alias} WHERE {predicate}))"
        )

    def _element_operators(self, operators: dict[str, Any], alias: str) -> str:
        """Operators applied to the array element itself ($elemMatch on scalars)."""
        clauses = []
        value, type_ = f"{alias}.value", f"{alias}.type"
        for operator, operand in operators.items():
            if operator in ("$gt", "$gte", "$lt", "$lte"):
                clauses.append(self._comparison(operator, operand)(value, type_))
            elif operator == "$eq":
                clauses.append(self._scalar_equals(operand)(value, type_))
            elif operator == "$ne":
                clauses.append(f"NOT IFNULL(({self._scalar_equals(operand)(value, type_)}), 0)")
            elif operator == "$in":
                if not isinstance(operand, list):
                    raise StoreQueryError("$in needs an array")
                if not operand:
                    clauses.append("0")
                else:
                    clauses.append(
                        "(" + " OR ".join(self._scalar_equals(v)(value, type_) for v in operand) + ")"
                    )
            else:
                raise StoreQueryError(f"unsupported operator in $elemMatch: {operator}")
        return "(" + " AND ".join(clauses) + ")"

    def _bound(self, value: Any, template: str) -> Predicate:
        def predicate(v: str, t: str) -> str:
            self.params.append(value)
            return "(" + template.format(v=v, t=t) + ")"

        return predicate

    def _alias(self) -> str:
        self._alias_counter += 1
        return f"je{self._alias_counter}"


def _is_operator_document(value: Any) -> bool:
    """Whether a condition is an operator document like {"$gt": 1}.

    Raises:
        StoreQueryError: If operator and plain keys are mixed
    """
    if not isinstance(value, dict) or not value:
        return False
    operator_keys = [k for k in value if k.startswith("$")]
    if not operator_keys:
        return False
    if len(operator_keys) != len(value):
        raise StoreQueryError(f"unknown operator: {operator_keys[0]}")
    return True


def compile_filter(filter: dict[str, Any], doc_expr: str) -> tuple[str, list[Any]]:
    """Compile a filter document into a WHERE clause and its parameters."""
    compiler = FilterCompiler(doc_expr)
    sql = compiler.compile(filter)
    return sql, compiler.params


def compile_sort(sort: list[tuple[str, int]], doc_expr: str) -> str:
    """Compile (field, direction) pairs into ORDER BY terms (without the keyword)."""
    terms = []
    for field_path, direction in sort:
        path = json_path(field_path)
        order = "DESC" if direction < 0 else "ASC"
        rank = _SORT_TYPE_RANK.format(type=f"json_type({doc_expr}, {path})")
        terms.append(f"{rank} {order}")
        terms.append(f"json_extract({doc_expr}, {path}) {order}")
    return ", ".join(terms)


def get_path(document: dict[str, Any], field_path: str, default: Any = None) -> Any:
    """Read a dotted path from a plain document."""
    current: Any = document
    for segment in field_path.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return default
    return current


def project_document(document: dict[str, Any], projection: dict[str, int] | None) -> dict[str, Any]:
    """Apply an include-only or exclude-only projection to a plain document.

    `_id` is kept unless explicitly excluded, in both modes.
    """
    if not projection:
        return document

    inclusive = any(value for key, value in projection.items() if key != "_id")
    if inclusive:
        result: dict[str, Any] = {}
        if projection.get("_id", 1) and "_id" in document:
            result["_id"] = document["_id"]
        for key, value in projection.items():
            if key == "_id" or not value:
                continue
            found = get_path(document, key, _MISSING)
            if found is not _MISSING:
                _set_path(result, key, copy.deepcopy(found))
        return result

    result = copy.deepcopy(document)
    for key, value in projection.items():
        if not value:
            _delete_path(result, key)
    return result


def _set_path(target: dict[str, Any], field_path: str, value: Any) -> None:
    segments = field_path.split(".")
    for segment in segments[:-1]:
        target = target.setdefault(segment, {})
    target[segments[-1]] = value


def _delete_path(target: dict[str, Any], field_path: str) -> None:
    segments = field_path.split(".")
    for segment in segments[:-1]:
        target = target.get(segment)
        if not isinstance(target, dict):
            return
    target.pop(segments[-1], None)
