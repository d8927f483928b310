"""Global capability policy for restricted scripts.

Every execution gets a freshly built globals table. It starts empty and only
the enumerated bindings below are added back, so nothing ambient leaks in
when the host interpreter grows new builtins.
"""

import asyncio
import base64 as _base64
import builtins
import collections as _collections
import datetime as _datetime
import decimal as _decimal
import fractions as _fractions
import functools as _functools
import itertools as _itertools
import json as _json
import math as _math
import operator
import re as _re
import statistics as _statistics
import string as _string
import textwrap as _textwrap
import weakref as _weakref
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, Optional, Set
from urllib import parse as _urllib_parse

import structlog
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
)

from librarian_rlm.exceptions import SandboxViolationError

logger = structlog.get_logger()


SAFE_BUILTIN_NAMES = frozenset({
    # Constants
    "Ellipsis",
    "NotImplemented",
    # Types and constructors
    "bool",
    "bytearray",
    "bytes",
    "complex",
    "dict",
    "float",
    "frozenset",
    "int",
    "list",
    "object",
    "range",
    "set",
    "slice",
    "str",
    "tuple",
    # Functions
    "abs",
    "all",
    "any",
    "ascii",
    "bin",
    "callable",
    "chr",
    "divmod",
    "enumerate",
    "filter",
    "hash",
    "hex",
    "isinstance",
    "issubclass",
    "iter",
    "len",
    "map",
    "max",
    "min",
    "next",
    "oct",
    "ord",
    "pow",
    "repr",
    "reversed",
    "round",
    "sorted",
    "sum",
    "zip",
})

SAFE_EXCEPTION_NAMES = frozenset({
    "ArithmeticError",
    "AssertionError",
    "AttributeError",
    "Exception",
    "IndexError",
    "KeyError",
    "LookupError",
    "NameError",
    "NotImplementedError",
    "OverflowError",
    "RuntimeError",
    "StopAsyncIteration",
    "StopIteration",
    "TimeoutError",
    "TypeError",
    "UnicodeDecodeError",
    "UnicodeEncodeError",
    "ValueError",
    "ZeroDivisionError",
})

# Bound to None so any use fails instead of resolving to something real
BLOCKED_NAMES = frozenset({
    # Code-from-string and introspection
    "eval",
    "exec",
    "compile",
    "globals",
    "locals",
    "vars",
    "dir",
    "type",
    "super",
    "classmethod",
    "staticmethod",
    "property",
    "setattr",
    "delattr",
    "memoryview",
    # Host interaction
    "open",
    "input",
    "breakpoint",
    "help",
    "exit",
    "quit",
    # Ambient modules and host objects
    "os",
    "sys",
    "subprocess",
    "socket",
    "shutil",
    "pathlib",
    "importlib",
    "ctypes",
    "multiprocessing",
    "threading",
    "signal",
    "builtins",
    "http",
    "urllib",
    "requests",
    "httpx",
    "mmap",
    "process",
    "require",
    "fetch",
    "Buffer",
})

# Attributes that walk from a value back into interpreter internals
BLOCKED_ATTRIBUTES = frozenset({
    "ag_await",
    "ag_code",
    "ag_frame",
    "cr_await",
    "cr_code",
    "cr_frame",
    "cr_origin",
    "f_back",
    "f_builtins",
    "f_code",
    "f_globals",
    "f_locals",
    "gi_code",
    "gi_frame",
    "gi_yieldfrom",
    "tb_frame",
    "tb_next",
    "get_loop",
    "get_coro",
})

# str.format can reach attributes through replacement fields
BLOCKED_STR_METHODS = frozenset({"format", "format_map"})


def _namespace(members: Dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(**members)


def _pick(module: Any, names: Iterable[str]) -> Dict[str, Any]:
    return {name: getattr(module, name) for name in names}


MODULE_CATALOGUE: Dict[str, Callable[[], SimpleNamespace]] = {
    "json": lambda: _namespace(_pick(_json, ("dumps", "loads", "JSONDecodeError"))),
    "re": lambda: _namespace(_pick(_re, (
        "compile", "search", "match", "fullmatch", "findall", "finditer",
        "sub", "subn", "split", "escape", "error",
        "IGNORECASE", "MULTILINE", "DOTALL", "VERBOSE", "ASCII",
        "I", "M", "S", "X", "A",
    ))),
    "math": lambda: _namespace({
        name: getattr(_math, name) for name in dir(_math) if not name.startswith("_")
    }),
    "datetime": lambda: _namespace(_pick(_datetime, (
        "date", "datetime", "time", "timedelta", "timezone", "MINYEAR", "MAXYEAR",
    ))),
    "collections": lambda: _namespace(_pick(_collections, (
        "Counter", "OrderedDict", "defaultdict", "deque", "namedtuple", "ChainMap",
    ))),
    "itertools": lambda: _namespace(_pick(_itertools, (
        "accumulate", "chain", "combinations", "count", "cycle", "groupby",
        "islice", "permutations", "product", "repeat", "starmap", "takewhile",
        "dropwhile", "zip_longest",
    ))),
    "functools": lambda: _namespace(_pick(_functools, (
        "reduce", "partial", "cmp_to_key",
    ))),
    "statistics": lambda: _namespace(_pick(_statistics, (
        "mean", "median", "mode", "stdev", "pstdev", "variance", "pvariance",
    ))),
    "string": lambda: _namespace(_pick(_string, (
        "ascii_letters", "ascii_lowercase", "ascii_uppercase", "digits",
        "hexdigits", "punctuation", "whitespace", "capwords",
    ))),
    "textwrap": lambda: _namespace(_pick(_textwrap, (
        "dedent", "indent", "shorten", "wrap", "fill",
    ))),
    "decimal": lambda: _namespace(_pick(_decimal, ("Decimal",))),
    "fractions": lambda: _namespace(_pick(_fractions, ("Fraction",))),
    "weakref": lambda: _namespace(_pick(_weakref, (
        "ref", "WeakKeyDictionary", "WeakValueDictionary", "WeakSet",
    ))),
    "base64": lambda: _namespace(_pick(_base64, (
        "b64encode", "b64decode", "urlsafe_b64encode", "urlsafe_b64decode",
        "b16encode", "b16decode", "b32encode", "b32decode",
    ))),
    "urllib_parse": lambda: _namespace(_pick(_urllib_parse, (
        "quote", "quote_plus", "unquote", "unquote_plus", "urlencode",
        "urlparse", "urlsplit", "urljoin", "parse_qs", "parse_qsl",
    ))),
    "asyncio": lambda: _namespace({
        "gather": asyncio.gather,
        "sleep": asyncio.sleep,
        "wait_for": asyncio.wait_for,
        "TimeoutError": asyncio.TimeoutError,
    }),
}

# Dotted import spellings accepted for catalogue entries
IMPORT_ALIASES = {"urllib.parse": "urllib_parse"}

_INPLACE_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "^=": operator.ixor,
    "|=": operator.ior,
    "@=": operator.imatmul,
}


def guarded_getattr(obj: Any, name: str, *default: Any) -> Any:
    """Attribute access used for every ``obj.name`` in a script and for ``getattr()``."""
    if not isinstance(name, str):
        raise TypeError("attribute name must be a string")
    if name.startswith("_"):
        raise SandboxViolationError(
            f'"{name}" is an invalid attribute name because it starts with "_"'
        )
    if name in BLOCKED_ATTRIBUTES:
        raise SandboxViolationError(f'Access to attribute "{name}" is not allowed')
    if name in BLOCKED_STR_METHODS and (
        isinstance(obj, str) or (isinstance(obj, type) and issubclass(obj, str))
    ):
        raise SandboxViolationError(f"Using str.{name}() is not allowed, use f-strings instead")
    if isinstance(obj, asyncio.AbstractEventLoop):
        raise SandboxViolationError("Access to the event loop is not allowed")
    return getattr(obj, name, *default)


def guarded_hasattr(obj: Any, name: str) -> bool:
    try:
        guarded_getattr(obj, name)
    except (AttributeError, SandboxViolationError):
        return False
    return True


def inplace_var(op: str, target: Any, value: Any) -> Any:
    """Backs ``x += y`` style statements on plain names."""
    try:
        fn = _INPLACE_OPERATORS[op]
    except KeyError:
        raise SandboxViolationError(f"Augmented assignment {op!r} is not allowed")
    return fn(target, value)


def apply_call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


class GlobalPolicy:
    """Enumerated allow/deny table for script globals.

    Example:
        ```python
        policy = GlobalPolicy()
        script_globals = policy.build_globals({"buffers": {}, "print": ...})
        ```
    """

    def __init__(
        self,
        allowed_modules: Optional[Iterable[str]] = None,
        blocked_names: Optional[Iterable[str]] = None,
    ) -> None:
        """Initialize the policy.

        Args:
            allowed_modules: Catalogue entries exposed to scripts (default: all)
            blocked_names: Extra names bound to None on top of BLOCKED_NAMES
        """
        requested = list(allowed_modules) if allowed_modules is not None else list(MODULE_CATALOGUE)
        unknown = [name for name in requested if name not in MODULE_CATALOGUE]
        if unknown:
            logger.warning("unknown_sandbox_modules_ignored", modules=unknown)

        self.blocked_names: Set[str] = set(BLOCKED_NAMES) | set(blocked_names or ())
        self.allowed_modules = [
            name for name in requested
            if name in MODULE_CATALOGUE and name not in self.blocked_names
        ]

    def build_modules(self) -> Dict[str, SimpleNamespace]:
        """Create fresh curated namespaces for the allowed modules."""
        return {name: MODULE_CATALOGUE[name]() for name in self.allowed_modules}

    def build_builtins(self, modules: Dict[str, SimpleNamespace]) -> Dict[str, Any]:
        """Create the ``__builtins__`` table for one execution."""
        table: Dict[str, Any] = {}
        for name in SAFE_BUILTIN_NAMES | SAFE_EXCEPTION_NAMES:
            table[name] = getattr(builtins, name)

        table["getattr"] = guarded_getattr
        table["hasattr"] = guarded_hasattr
        table["__import__"] = self._make_import(modules)

        for name in self.blocked_names:
            table[name] = None
        return table

    def build_globals(self, bindings: Dict[str, Any]) -> Dict[str, Any]:
        """Assemble the complete globals dict a compiled script runs against.

        Args:
            bindings: Script-facing names (context, buffers, repo, llm_query, ...)

        Returns:
            Globals with guards, builtins, module namespaces and bindings
        """
        modules = self.build_modules()
        script_globals: Dict[str, Any] = {
            "__builtins__": self.build_builtins(modules),
            "__name__": "rlm_script",
            "__metaclass__": type,
            "_getattr_": guarded_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": default_guarded_getiter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": full_write_guard,
            "_inplacevar_": inplace_var,
            "_apply_": apply_call,
        }
        script_globals.update(modules)
        script_globals.update(bindings)
        return script_globals

    def _make_import(self, modules: Dict[str, SimpleNamespace]) -> Callable[..., Any]:
        def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
            key = name
            if fromlist and name in IMPORT_ALIASES:
                key = IMPORT_ALIASES[name]
            if level != 0 or key not in modules:
                raise ImportError(f"Import of '{name}' is not allowed in the sandbox")
            return modules[key]

        return guarded_import
