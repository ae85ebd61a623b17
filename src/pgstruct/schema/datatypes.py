"""PostgreSQL column type descriptors."""

import re
from dataclasses import dataclass
from typing import Optional

__all__ = ["TypeDescriptor", "TypeCategory", "parse_type"]


class TypeCategory:
    """Closed set of type families the comparator knows how to classify."""

    NUMERIC = "numeric"
    SERIAL = "serial"
    MONETARY = "monetary"
    CHARACTER = "character"
    BINARY = "binary"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    INTERVAL = "interval"
    GEOMETRIC = "geometric"
    NETWORK = "network"
    BIT_STRING = "bit_string"
    TEXT_SEARCH = "text_search"
    UUID = "uuid"
    XML = "xml"
    JSON = "json"
    RANGE = "range"
    OBJECT_IDENTIFIER = "object_identifier"
    USER_DEFINED = "user_defined"


_CATEGORIES: dict[str, str] = {
    "smallint": TypeCategory.NUMERIC,
    "integer": TypeCategory.NUMERIC,
    "bigint": TypeCategory.NUMERIC,
    "numeric": TypeCategory.NUMERIC,
    "real": TypeCategory.NUMERIC,
    "double precision": TypeCategory.NUMERIC,
    "smallserial": TypeCategory.SERIAL,
    "serial": TypeCategory.SERIAL,
    "bigserial": TypeCategory.SERIAL,
    "money": TypeCategory.MONETARY,
    "varchar": TypeCategory.CHARACTER,
    "char": TypeCategory.CHARACTER,
    "text": TypeCategory.CHARACTER,
    "name": TypeCategory.CHARACTER,
    "citext": TypeCategory.CHARACTER,
    "bytea": TypeCategory.BINARY,
    "boolean": TypeCategory.BOOLEAN,
    "date": TypeCategory.DATETIME,
    "time": TypeCategory.DATETIME,
    "timetz": TypeCategory.DATETIME,
    "timestamp": TypeCategory.DATETIME,
    "timestamptz": TypeCategory.DATETIME,
    "interval": TypeCategory.INTERVAL,
    "point": TypeCategory.GEOMETRIC,
    "line": TypeCategory.GEOMETRIC,
    "lseg": TypeCategory.GEOMETRIC,
    "box": TypeCategory.GEOMETRIC,
    "path": TypeCategory.GEOMETRIC,
    "polygon": TypeCategory.GEOMETRIC,
    "circle": TypeCategory.GEOMETRIC,
    "inet": TypeCategory.NETWORK,
    "cidr": TypeCategory.NETWORK,
    "macaddr": TypeCategory.NETWORK,
    "macaddr8": TypeCategory.NETWORK,
    "bit": TypeCategory.BIT_STRING,
    "varbit": TypeCategory.BIT_STRING,
    "tsvector": TypeCategory.TEXT_SEARCH,
    "tsquery": TypeCategory.TEXT_SEARCH,
    "uuid": TypeCategory.UUID,
    "xml": TypeCategory.XML,
    "json": TypeCategory.JSON,
    "jsonb": TypeCategory.JSON,
    "jsonpath": TypeCategory.JSON,
    "int4range": TypeCategory.RANGE,
    "int8range": TypeCategory.RANGE,
    "numrange": TypeCategory.RANGE,
    "tsrange": TypeCategory.RANGE,
    "tstzrange": TypeCategory.RANGE,
    "daterange": TypeCategory.RANGE,
    "oid": TypeCategory.OBJECT_IDENTIFIER,
    "regclass": TypeCategory.OBJECT_IDENTIFIER,
}

_ALIASES: dict[str, str] = {
    "int": "integer",
    "int4": "integer",
    "int8": "bigint",
    "int2": "smallint",
    "decimal": "numeric",
    "float8": "double precision",
    "float": "double precision",
    "float4": "real",
    "character varying": "varchar",
    "character": "char",
    "bpchar": "char",
    "bool": "boolean",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "time with time zone": "timetz",
    "bit varying": "varbit",
    "serial4": "serial",
    "serial8": "bigserial",
    "serial2": "smallserial",
}

_ARRAY_SUFFIX = re.compile(r"\s*\[\s*\d*\s*\]$")
_ARRAY_KEYWORD = re.compile(r"\s+array$")
_PARAMS = re.compile(r"\(([^()]*)\)")


@dataclass(frozen=True)
class TypeDescriptor:
    """Tagged type descriptor: canonical base name plus parameter list.

    Equality is structural: ``NUMERIC(10, 2)`` and ``decimal(10,2)`` describe
    the same type.
    """

    name: str
    params: tuple[str, ...] = ()
    array_dims: int = 0

    @property
    def category(self) -> Optional[str]:
        if self.name in _CATEGORIES:
            return _CATEGORIES[self.name]
        if self.name.startswith("interval "):
            return TypeCategory.INTERVAL
        if "." in self.name:
            return TypeCategory.USER_DEFINED
        return None

    @property
    def is_classified(self) -> bool:
        return self.category is not None

    @property
    def element(self) -> "TypeDescriptor":
        """The element type of an array (or the type itself)."""
        return TypeDescriptor(self.name, self.params)

    def render(self) -> str:
        """Render back to PostgreSQL DDL text."""
        text = self.name
        if self.params:
            args = ", ".join(self.params)
            if self.name in ("timestamptz", "timetz"):
                base = self.name[:-2]
                text = f"{base}({args}) with time zone"
            else:
                text = f"{self.name}({args})"
        return text + "[]" * self.array_dims

    def __str__(self) -> str:
        return self.render()


def parse_type(text: str) -> TypeDescriptor:
    """Parse a type as written in DDL or reported by ``format_type()``.

    Args:
        text: e.g. ``VARCHAR(255)``, ``numeric(10, 2)``, ``integer[]``,
            ``timestamp(3) with time zone``, ``public.mood``.
    """
    if not text or not text.strip():
        raise ValueError("Empty type")

    raw = " ".join(text.strip().split())
    quoted = '"' in raw
    value = raw if quoted else raw.lower()

    array_dims = 0
    while True:
        if _ARRAY_SUFFIX.search(value):
            value = _ARRAY_SUFFIX.sub("", value)
            array_dims += 1
        elif _ARRAY_KEYWORD.search(value):
            value = _ARRAY_KEYWORD.sub("", value)
            array_dims += 1
        else:
            break

    params: tuple[str, ...] = ()
    match = _PARAMS.search(value)
    if match:
        params = tuple(p.strip() for p in match.group(1).split(",") if p.strip())
        value = (value[: match.start()] + " " + value[match.end() :]).strip()
        value = " ".join(value.split())

    if quoted:
        value = value.replace('"', "")
    name = _ALIASES.get(value, value)

    if name in ("char", "bit") and not params:
        params = ("1",)

    return TypeDescriptor(name=name, params=params, array_dims=array_dims)
