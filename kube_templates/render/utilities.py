"""General-purpose utility functions available to every template.

A Sprig-style collection of string, list, dict, math, encoding, regex,
date and flow helpers.  Like the built-ins, each takes the piped subject as
its first argument: ``"  x " | trim`` and ``trim("  x ")`` are equivalent,
as are ``name | replace("-", "_")`` and ``replace(name, "-", "_")``.

``env`` and ``expandenv`` exist so that templates using them fail with a
clear denylist error; the resolver always denylists them.
"""

from __future__ import annotations

import base64
import copy
import hashlib
import math
import os
import random
import re
import string
import uuid
import zlib
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jinja2 import Undefined

from kube_templates.errors import TemplateExecutionError

#: Functions that disclose the host environment.  Always denylisted.
SENSITIVE_FUNCTIONS = ("env", "expandenv")


# ── strings ──────────────────────────────────────────────────────────


def trim(value: Any) -> str:
    return str(value).strip()


def trim_all(value: Any, cutset: str) -> str:
    return str(value).strip(cutset)


def trim_prefix(value: Any, prefix: str) -> str:
    text = str(value)
    return text[len(prefix):] if prefix and text.startswith(prefix) else text


def trim_suffix(value: Any, suffix: str) -> str:
    text = str(value)
    return text[: -len(suffix)] if suffix and text.endswith(suffix) else text


def title(value: Any) -> str:
    return string.capwords(str(value), " ")


def untitle(value: Any) -> str:
    return " ".join(w[:1].lower() + w[1:] for w in str(value).split(" "))


def substr(value: Any, start: int, end: int) -> str:
    text = str(value)
    if start < 0:
        return text[:end]
    if end < 0 or end > len(text):
        return text[start:]
    return text[start:end]


def trunc(value: Any, length: int) -> str:
    text = str(value)
    if length < 0:
        return text[length:] if -length < len(text) else text
    return text[:length]


def abbrev(value: Any, width: int) -> str:
    text = str(value)
    if width < 4 or len(text) <= width:
        return text
    return text[: width - 3] + "..."


def initials(value: Any) -> str:
    return "".join(w[0] for w in str(value).split())


def nospace(value: Any) -> str:
    return "".join(str(value).split())


def quote(*values: Any) -> str:
    quoted = []
    for v in values:
        if v is not None:
            escaped = str(v).replace("\\", "\\\\").replace('"', '\\"')
            quoted.append('"' + escaped + '"')
    return " ".join(quoted)


def squote(*values: Any) -> str:
    return " ".join("'" + str(v) + "'" for v in values if v is not None)


def cat(*values: Any) -> str:
    return " ".join(str(v) for v in values if v is not None)


def replace(value: Any, old: str, new: str) -> str:
    return str(value).replace(old, new)


def plural(count: int, one: str, many: str) -> str:
    return one if count == 1 else many


def snakecase(value: Any) -> str:
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", str(value))
    return re.sub(r"[\s\-]+", "_", text).lower()


def camelcase(value: Any) -> str:
    return "".join(p[:1].upper() + p[1:] for p in re.split(r"[_\s\-]+", str(value)) if p)


def kebabcase(value: Any) -> str:
    return snakecase(value).replace("_", "-")


def wrap(value: Any, width: int) -> str:
    words = str(value).split()
    lines: List[str] = []
    current = ""
    for word in words:
        if current and len(current) + 1 + len(word) > width:
            lines.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        lines.append(current)
    return "\n".join(lines)


def split(value: Any, sep: str) -> Dict[str, str]:
    return {f"_{i}": part for i, part in enumerate(str(value).split(sep))}


def split_list(value: Any, sep: str) -> List[str]:
    return str(value).split(sep)


def join(values: Iterable[Any], sep: str) -> str:
    if isinstance(values, str):
        return values
    return sep.join(str(v) for v in values if v is not None)


def sort_alpha(values: Iterable[Any]) -> List[str]:
    return sorted(str(v) for v in values)


# ── regex ────────────────────────────────────────────────────────────


def regex_match(value: Any, pattern: str) -> bool:
    return re.search(pattern, str(value)) is not None


def regex_find(value: Any, pattern: str) -> str:
    m = re.search(pattern, str(value))
    return m.group(0) if m else ""


def regex_find_all(value: Any, pattern: str, n: int = -1) -> List[str]:
    found = [m.group(0) for m in re.finditer(pattern, str(value))]
    return found if n < 0 else found[:n]


def regex_replace_all(value: Any, pattern: str, repl: str) -> str:
    # ${1} style group references
    return re.sub(pattern, re.sub(r"\$\{?(\d+)\}?", r"\\g<\1>", repl), str(value))


def regex_replace_all_literal(value: Any, pattern: str, repl: str) -> str:
    return re.sub(pattern, lambda _m: repl, str(value))


def regex_split(value: Any, pattern: str, n: int = -1) -> List[str]:
    return re.split(pattern, str(value), maxsplit=max(0, n - 1) if n > 0 else 0)


# ── lists ────────────────────────────────────────────────────────────


def make_list(*values: Any) -> List[Any]:
    return list(values)


def first(values: Any) -> Any:
    return values[0] if values else None


def rest(values: Any) -> List[Any]:
    return list(values[1:]) if values else []


def last(values: Any) -> Any:
    return values[-1] if values else None


def initial(values: Any) -> List[Any]:
    return list(values[:-1]) if values else []


def append(values: Any, item: Any) -> List[Any]:
    return list(values or []) + [item]


def prepend(values: Any, item: Any) -> List[Any]:
    return [item] + list(values or [])


def concat(*lists: Any) -> List[Any]:
    result: List[Any] = []
    for values in lists:
        result.extend(values or [])
    return result


def reverse(values: Any) -> List[Any]:
    return list(reversed(list(values or [])))


def uniq(values: Any) -> List[Any]:
    result: List[Any] = []
    for item in values or []:
        if item not in result:
            result.append(item)
    return result


def without(values: Any, *excluded: Any) -> List[Any]:
    return [v for v in values or [] if v not in excluded]


def has(values: Any, item: Any) -> bool:
    return item in (values or [])


def compact(values: Any) -> List[Any]:
    return [v for v in values or [] if not empty(v)]


def slice_list(values: Any, *bounds: int) -> List[Any]:
    values = list(values or [])
    if not bounds:
        return values
    if len(bounds) == 1:
        return values[bounds[0]:]
    return values[bounds[0]:bounds[1]]


def until(count: int) -> List[int]:
    return list(range(count)) if count >= 0 else list(range(0, count, -1))


def seq(*args: int) -> str:
    if len(args) == 1:
        numbers = range(1, args[0] + 1) if args[0] >= 1 else range(1, args[0] - 1, -1)
    elif len(args) == 2:
        step = 1 if args[1] >= args[0] else -1
        numbers = range(args[0], args[1] + step, step)
    elif len(args) == 3:
        step = args[1]
        numbers = range(args[0], args[2] + (1 if step > 0 else -1), step) if step else range(0)
    else:
        return ""
    return " ".join(str(n) for n in numbers)


# ── dicts ────────────────────────────────────────────────────────────


def make_dict(*pairs: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    items = list(pairs)
    if len(items) % 2:
        items.append("")
    for key, value in zip(items[::2], items[1::2]):
        result[str(key)] = value
    return result


def dict_get(mapping: Dict[str, Any], key: str) -> Any:
    return (mapping or {}).get(key, "")


def dict_set(mapping: Dict[str, Any], key: str, value: Any) -> Dict[str, Any]:
    mapping[key] = value
    return mapping


def dict_unset(mapping: Dict[str, Any], key: str) -> Dict[str, Any]:
    mapping.pop(key, None)
    return mapping


def has_key(mapping: Dict[str, Any], key: str) -> bool:
    return key in (mapping or {})


def keys(*mappings: Dict[str, Any]) -> List[str]:
    result: List[str] = []
    for mapping in mappings:
        result.extend((mapping or {}).keys())
    return result


def values(mapping: Dict[str, Any]) -> List[Any]:
    return list((mapping or {}).values())


def pluck(key: str, *mappings: Dict[str, Any]) -> List[Any]:
    return [m[key] for m in mappings if m and key in m]


def merge(dest: Dict[str, Any], *sources: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge; keys already in *dest* win."""
    for source in sources:
        for key, value in (source or {}).items():
            if key not in dest:
                dest[key] = value
            elif isinstance(dest[key], dict) and isinstance(value, dict):
                merge(dest[key], value)
    return dest


def merge_overwrite(dest: Dict[str, Any], *sources: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge; later sources win."""
    for source in sources:
        for key, value in (source or {}).items():
            if isinstance(dest.get(key), dict) and isinstance(value, dict):
                merge_overwrite(dest[key], value)
            else:
                dest[key] = value
    return dest


def pick(mapping: Dict[str, Any], *names: str) -> Dict[str, Any]:
    return {k: v for k, v in (mapping or {}).items() if k in names}


def omit(mapping: Dict[str, Any], *names: str) -> Dict[str, Any]:
    return {k: v for k, v in (mapping or {}).items() if k not in names}


def dig(mapping: Dict[str, Any], *path_and_default: Any) -> Any:
    """``dig(obj, "a", "b", default)`` walks ``obj.a.b``."""
    if not path_and_default:
        raise TemplateExecutionError("dig requires at least a default value")
    *path, default = path_and_default
    current: Any = mapping
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def deep_copy(value: Any) -> Any:
    return copy.deepcopy(value)


# ── math ─────────────────────────────────────────────────────────────


def _num(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def add(*numbers: Any) -> int:
    return sum(_int(n) for n in numbers)


def add1(value: Any) -> int:
    return _int(value) + 1


def sub(a: Any, b: Any) -> int:
    return _int(a) - _int(b)


def mul(*numbers: Any) -> int:
    result = 1
    for n in numbers:
        result *= _int(n)
    return result


def div(a: Any, b: Any) -> int:
    divisor = _int(b)
    if divisor == 0:
        raise TemplateExecutionError("integer divide by zero")
    quotient = abs(_int(a)) // abs(divisor)
    return quotient if (_int(a) >= 0) == (divisor > 0) else -quotient


def mod(a: Any, b: Any) -> int:
    divisor = _int(b)
    if divisor == 0:
        raise TemplateExecutionError("integer divide by zero")
    return int(math.fmod(_int(a), divisor))


def max_of(*numbers: Any) -> int:
    return max(_int(n) for n in numbers)


def min_of(*numbers: Any) -> int:
    return min(_int(n) for n in numbers)


def floor(value: Any) -> float:
    return float(math.floor(_num(value)))


def ceil(value: Any) -> float:
    return float(math.ceil(_num(value)))


def round_to(value: Any, places: int = 0) -> float:
    factor = 10 ** places
    number = _num(value) * factor
    rounded = math.floor(number + 0.5) if number >= 0 else math.ceil(number - 0.5)
    return rounded / factor


def to_int64(value: Any) -> int:
    return _int(value)


def to_float64(value: Any) -> float:
    return _num(value)


def to_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_strings(values: Any) -> List[str]:
    return [to_string(v) for v in values or []]


# ── encoding / hashing ───────────────────────────────────────────────


def b32enc(value: Any) -> str:
    return base64.b32encode(str(value).encode("utf-8")).decode("ascii")


def b32dec(value: Any) -> str:
    try:
        return base64.b32decode(str(value)).decode("utf-8", errors="replace")
    except ValueError as exc:
        return str(exc)


def sha1sum(value: Any) -> str:
    return hashlib.sha1(str(value).encode("utf-8")).hexdigest()


def sha256sum(value: Any) -> str:
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()


def sha512sum(value: Any) -> str:
    return hashlib.sha512(str(value).encode("utf-8")).hexdigest()


def adler32sum(value: Any) -> str:
    return str(zlib.adler32(str(value).encode("utf-8")))


def uuidv4() -> str:
    return str(uuid.uuid4())


def rand_alphanum(count: int) -> str:
    alphabet = string.ascii_letters + string.digits
    rng = random.SystemRandom()
    return "".join(rng.choice(alphabet) for _ in range(count))


# ── flow / defaults ──────────────────────────────────────────────────


def empty(value: Any) -> bool:
    if value is None or isinstance(value, Undefined):
        return True
    if isinstance(value, bool):
        return not value
    if isinstance(value, (int, float)):
        return value == 0
    if isinstance(value, (str, list, tuple, dict, set)):
        return len(value) == 0
    return False


def default(value: Any, fallback: Any) -> Any:
    return fallback if empty(value) else value


def coalesce(*values: Any) -> Any:
    for value in values:
        if not empty(value):
            return value
    return None


def ternary(condition: Any, true_value: Any, false_value: Any) -> Any:
    return true_value if condition else false_value


def all_of(*values: Any) -> bool:
    return all(not empty(v) for v in values)


def any_of(*values: Any) -> bool:
    return any(not empty(v) for v in values)


def fail(message: Any) -> None:
    raise TemplateExecutionError(str(message))


def type_of(value: Any) -> str:
    return type(value).__name__


def kind_is(value: Any, kind: str) -> bool:
    return kind_of(value) == kind


def kind_of(value: Any) -> str:
    if value is None:
        return "invalid"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "map"
    if isinstance(value, (list, tuple)):
        return "slice"
    return type(value).__name__


# ── dates ────────────────────────────────────────────────────────────

# Reference-time layout tokens and their strftime equivalents, longest first
_LAYOUT_TOKENS = (
    ("January", "%B"),
    ("Monday", "%A"),
    ("Z07:00", "%:z"),
    ("-07:00", "%:z"),
    ("-0700", "%z"),
    ("2006", "%Y"),
    ("Jan", "%b"),
    ("Mon", "%a"),
    ("MST", "%Z"),
    (".000000", ".%f"),
    ("01", "%m"),
    ("02", "%d"),
    ("15", "%H"),
    ("03", "%I"),
    ("04", "%M"),
    ("05", "%S"),
    ("06", "%y"),
    ("PM", "%p"),
)

_DURATION_RE = re.compile(r"([-+]?[0-9]*\.?[0-9]+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _layout_to_strftime(layout: str) -> str:
    out = ""
    i = 0
    while i < len(layout):
        for token, directive in _LAYOUT_TOKENS:
            if layout.startswith(token, i):
                out += directive
                i += len(token)
                break
        else:
            out += layout[i].replace("%", "%%")
            i += 1
    return out


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.astimezone()
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).astimezone()
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise TemplateExecutionError(f"unable to parse time {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.astimezone()
    raise TemplateExecutionError(f"unsupported time value of type {type(value).__name__}")


def now() -> datetime:
    return datetime.now().astimezone()


def date(value: Any, layout: str) -> str:
    return _as_datetime(value).strftime(_layout_to_strftime(layout))


def date_in_zone(value: Any, layout: str, zone: str) -> str:
    try:
        tz = ZoneInfo(zone)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    return _as_datetime(value).astimezone(tz).strftime(_layout_to_strftime(layout))


def html_date(value: Any) -> str:
    return date(value, "2006-01-02")


def to_date(value: Any, layout: str) -> datetime:
    fmt = _layout_to_strftime(layout)
    try:
        parsed = datetime.strptime(str(value), fmt.replace("%:z", "%z"))
    except ValueError as exc:
        raise TemplateExecutionError(f"unable to parse {value!r} with layout {layout!r}") from exc
    return parsed if parsed.tzinfo else parsed.astimezone()


def unix_epoch(value: Any) -> str:
    return str(int(_as_datetime(value).timestamp()))


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``1h30m`` or ``-1.5h``."""
    text = text.strip()
    sign = -1 if text.startswith("-") else 1
    body = text.lstrip("+-")
    matches = list(_DURATION_RE.finditer(body))
    if not matches or "".join(m.group(0) for m in matches) != body:
        raise TemplateExecutionError(f"invalid duration {text!r}")
    seconds = sum(float(m.group(1)) * _DURATION_UNITS[m.group(2)] for m in matches)
    return timedelta(seconds=sign * seconds)


def date_modify(value: Any, duration: str) -> datetime:
    return _as_datetime(value) + parse_duration(duration)


def duration(seconds: Any) -> str:
    total = _int(seconds)
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


# ── host environment ─────────────────────────────────────────────────


def env(name: str) -> str:
    return os.environ.get(name, "")


def expandenv(value: str) -> str:
    return os.path.expandvars(value)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_UTILITY_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    # strings
    "trim": trim,
    "trimAll": trim_all,
    "trimPrefix": trim_prefix,
    "trimSuffix": trim_suffix,
    "upper": lambda v: str(v).upper(),
    "lower": lambda v: str(v).lower(),
    "title": title,
    "untitle": untitle,
    "repeat": lambda v, n: str(v) * int(n),
    "substr": substr,
    "trunc": trunc,
    "abbrev": abbrev,
    "initials": initials,
    "nospace": nospace,
    "contains": lambda v, sub_: str(sub_) in str(v),
    "hasPrefix": lambda v, p: str(v).startswith(p),
    "hasSuffix": lambda v, s: str(v).endswith(s),
    "quote": quote,
    "squote": squote,
    "cat": cat,
    "replace": replace,
    "plural": plural,
    "snakecase": snakecase,
    "camelcase": camelcase,
    "kebabcase": kebabcase,
    "swapcase": lambda v: str(v).swapcase(),
    "wrap": wrap,
    "split": split,
    "splitList": split_list,
    "join": join,
    "sortAlpha": sort_alpha,
    "toString": to_string,
    "toStrings": to_strings,
    # regex
    "regexMatch": regex_match,
    "regexFind": regex_find,
    "regexFindAll": regex_find_all,
    "regexReplaceAll": regex_replace_all,
    "regexReplaceAllLiteral": regex_replace_all_literal,
    "regexSplit": regex_split,
    "regexQuoteMeta": lambda v: re.escape(str(v)),
    # lists
    "list": make_list,
    "first": first,
    "rest": rest,
    "last": last,
    "initial": initial,
    "append": append,
    "prepend": prepend,
    "concat": concat,
    "reverse": reverse,
    "uniq": uniq,
    "without": without,
    "has": has,
    "compact": compact,
    "slice": slice_list,
    "until": until,
    "seq": seq,
    # dicts
    "dict": make_dict,
    "get": dict_get,
    "set": dict_set,
    "unset": dict_unset,
    "hasKey": has_key,
    "keys": keys,
    "values": values,
    "pluck": pluck,
    "merge": merge,
    "mergeOverwrite": merge_overwrite,
    "pick": pick,
    "omit": omit,
    "dig": dig,
    "deepCopy": deep_copy,
    # math
    "add": add,
    "add1": add1,
    "sub": sub,
    "mul": mul,
    "div": div,
    "mod": mod,
    "max": max_of,
    "min": min_of,
    "floor": floor,
    "ceil": ceil,
    "round": round_to,
    "int": to_int64,
    "int64": to_int64,
    "float64": to_float64,
    # encoding
    "b32enc": b32enc,
    "b32dec": b32dec,
    "sha1sum": sha1sum,
    "sha256sum": sha256sum,
    "sha512sum": sha512sum,
    "adler32sum": adler32sum,
    "uuidv4": uuidv4,
    "randAlphaNum": rand_alphanum,
    # flow
    "default": default,
    "empty": empty,
    "coalesce": coalesce,
    "ternary": ternary,
    "all": all_of,
    "any": any_of,
    "fail": fail,
    "typeOf": type_of,
    "kindOf": kind_of,
    "kindIs": kind_is,
    # dates
    "now": now,
    "date": date,
    "dateInZone": date_in_zone,
    "htmlDate": html_date,
    "toDate": to_date,
    "unixEpoch": unix_epoch,
    "dateModify": date_modify,
    "duration": duration,
    # host environment
    "env": env,
    "expandenv": expandenv,
}


def utility_functions() -> Dict[str, Callable[..., Any]]:
    """Return a fresh copy of the utility function table."""
    return dict(_UTILITY_FUNCTIONS)


def available_utility_functions() -> List[str]:
    """Return the sorted names of the utility functions."""
    return sorted(_UTILITY_FUNCTIONS)
