"""In-order XACRO macro engine built on ElementTree.

The document is walked once, top to bottom.  Directives take effect where
they appear: a macro can be called once it has been defined, and an
include is spliced in place with its definitions landing in the including
scope.  Property values that contain expressions are evaluated on first
use, so they may refer to properties defined further down.

Supported directives: ``property`` (value, default and block forms),
``arg``, ``include``, ``macro``, macro calls (``xacro:<name>`` and
``xacro:call``), ``insert_block``, ``if``/``unless``, ``element`` and
``attribute``.  Text and attribute values may contain ``${expr}``
expressions and ``$(arg|find|env|optenv|eval|dirname ...)``
substitutions; ``$${`` and ``$$(`` produce them literally.

Expressions are evaluated by walking the Python AST against a whitelist.
The grammar deliberately has no ``**`` operator; callers rewrite it to
``pow()`` first (see :mod:`robodesc.templating.preprocess`).
"""

from __future__ import annotations

import ast
import copy
import logging
import math
import operator
import os
import posixpath
import re
import shlex
import xml.etree.ElementTree as ET
from collections import ChainMap
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from robodesc.constants import MAX_INCLUDE_DEPTH, XACRO_NAMESPACES
from robodesc.resilience.errors import ExpansionGrammarError
from robodesc.resolution.scanner import split_tag

logger = logging.getLogger(__name__)

IncludeFetcher: TypeAlias = Callable[[str], Awaitable[str]]
Scope: TypeAlias = ChainMap[str, Any]

MAX_MACRO_DEPTH = 100

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

# ── Expression evaluation ───────────────────────────────


_MATH_NAMES: dict[str, Any] = {
    name: getattr(math, name)
    for name in dir(math)
    if not name.startswith("_")
}

_FUNCTIONS: dict[str, Any] = {
    **_MATH_NAMES,
    "pow": pow,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "len": len,
}

_BIN_OPS: dict[type[ast.operator], Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS: dict[type[ast.unaryop], Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARE_OPS: dict[type[ast.cmpop], Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}


class _EvalError(Exception):
    pass


class _Evaluator:
    """Evaluate one expression against a property scope."""

    def __init__(
        self,
        scope: Mapping[str, Any],
        resolve: Callable[[_Deferred], Any],
    ) -> None:
        self._scope = scope
        self._resolve = resolve

    def evaluate(self, expr: str) -> Any:
        try:
            tree = ast.parse(expr.strip(), mode="eval")
        except SyntaxError as exc:
            raise _EvalError(f"invalid syntax ({exc.msg})") from exc
        return self._eval(tree.body)

    def _eval(self, node: ast.expr) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return self._lookup(node.id)
        if isinstance(node, ast.Attribute):
            return self._attribute(node)
        if isinstance(node, ast.BinOp):
            op = _BIN_OPS.get(type(node.op))
            if op is None:
                raise _EvalError(
                    f"unsupported operator {type(node.op).__name__}"
                )
            return op(self._eval(node.left), self._eval(node.right))
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](self._eval(node.operand))
        if isinstance(node, ast.BoolOp):
            return self._bool_op(node)
        if isinstance(node, ast.Compare):
            return self._compare(node)
        if isinstance(node, ast.IfExp):
            if self._eval(node.test):
                return self._eval(node.body)
            return self._eval(node.orelse)
        if isinstance(node, ast.Call):
            return self._call(node)
        if isinstance(node, (ast.List, ast.Tuple)):
            items = [self._eval(elt) for elt in node.elts]
            return items if isinstance(node, ast.List) else tuple(items)
        if isinstance(node, ast.Subscript):
            return self._eval(node.value)[self._eval(node.slice)]
        raise _EvalError(f"unsupported syntax {type(node).__name__}")

    def _lookup(self, name: str) -> Any:
        if name in self._scope:
            value = self._scope[name]
            if isinstance(value, _Deferred):
                return self._resolve(value)
            if isinstance(value, _Block):
                raise _EvalError(f'"{name}" is a block, not a value')
            return value
        if name in _FUNCTIONS:
            return _FUNCTIONS[name]
        raise _EvalError(f'undefined property "{name}"')

    def _attribute(self, node: ast.Attribute) -> Any:
        if (
            isinstance(node.value, ast.Name)
            and node.value.id == "math"
            and node.attr in _MATH_NAMES
        ):
            return _MATH_NAMES[node.attr]
        raise _EvalError(f'unsupported attribute access ".{node.attr}"')

    def _bool_op(self, node: ast.BoolOp) -> Any:
        is_and = isinstance(node.op, ast.And)
        value: Any = None
        for operand in node.values:
            value = self._eval(operand)
            if bool(value) != is_and:
                return value
        return value

    def _compare(self, node: ast.Compare) -> bool:
        left = self._eval(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            fn = _COMPARE_OPS.get(type(op))
            if fn is None:
                raise _EvalError(
                    f"unsupported comparison {type(op).__name__}"
                )
            right = self._eval(comparator)
            if not fn(left, right):
                return False
            left = right
        return True

    def _call(self, node: ast.Call) -> Any:
        if node.keywords:
            raise _EvalError("keyword arguments are not supported")
        if isinstance(node.func, ast.Name) and node.func.id in _FUNCTIONS:
            fn = _FUNCTIONS[node.func.id]
        elif isinstance(node.func, ast.Attribute):
            fn = self._attribute(node.func)
        else:
            raise _EvalError(f"call to unknown function {ast.unparse(node.func)}")
        args = []
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                raise _EvalError("starred arguments are not supported")
            args.append(self._eval(arg))
        return fn(*args)


def _coerce(value: Any) -> Any:
    """Boolean and numeric literals become bool, int or float, like xacro."""
    if isinstance(value, str):
        text = value.strip()
        if text in ("true", "True"):
            return True
        if text in ("false", "False"):
            return False
        if _NUMBER_RE.fullmatch(text):
            if any(c in text for c in ".eE"):
                return float(text)
            return int(text)
    return value


def _render(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def _find_close(text: str, start: int, open_ch: str, close_ch: str) -> int:
    """Index of the bracket closing the one at *start*, or -1."""
    depth = 0
    quote: str | None = None
    for i in range(start, len(text)):
        ch = text[i]
        if quote:
            if ch == quote:
                quote = None
            continue
        if ch in "'\"" and depth:
            quote = ch
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i
    return -1


def _append_text(parent: ET.Element, text: str) -> None:
    if len(parent):
        last = parent[-1]
        last.tail = (last.tail or "") + text
    else:
        parent.text = (parent.text or "") + text


# ── Document model ──────────────────────────────────────


@dataclass
class _Block:
    elements: list[ET.Element]
    evaluated: bool = False


@dataclass(eq=False)
class _Deferred:
    """Property text evaluated on first lookup, then cached in ``table``."""

    name: str
    text: str
    scope: Scope
    ctx: _Context
    table: dict[str, Any]
    busy: bool = False


@dataclass
class _MacroParam:
    name: str
    block: int = 0  # number of leading stars
    default: str | None = None
    inherit: bool = False


@dataclass
class _Macro:
    name: str
    params: list[_MacroParam]
    body: ET.Element


@dataclass(frozen=True)
class _Context:
    """The file currently being processed."""

    path: str | None
    depth: int = 0

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path) if self.path else ""


def _xacro_attr(elem: ET.Element, local: str) -> str | None:
    for key, value in elem.attrib.items():
        ns, name = split_tag(key)
        if ns in XACRO_NAMESPACES and name == local:
            return value
    return None


# ── Expansion run ───────────────────────────────────────


class _Expansion:
    """State of a single ``expand`` call: symbols, macros and args."""

    def __init__(
        self,
        fetch: IncludeFetcher,
        env: Mapping[str, str],
        args: Mapping[str, str],
        max_include_depth: int,
    ) -> None:
        self._fetch = fetch
        self._env = env
        self._args: dict[str, Any] = dict(args)
        self._max_include_depth = max_include_depth
        self._globals: dict[str, Any] = {}
        self._macros: dict[str, _Macro] = {}
        self._macro_depth = 0
        self._directives = {
            "property": self._property,
            "arg": self._arg,
            "include": self._include,
            "macro": self._macro,
            "if": self._if,
            "unless": self._unless,
            "element": self._element,
            "attribute": self._attribute,
            "insert_block": self._insert_block,
            "call": self._call,
        }

    async def run(self, text: str, source_path: str | None) -> str:
        ctx = _Context(source_path)
        root = self._parse(text, ctx)
        ns, local = split_tag(root.tag)
        if ns in XACRO_NAMESPACES:
            raise self._error(
                f"Root element cannot be the directive xacro:{local}", ctx
            )
        scope: Scope = ChainMap(self._globals)
        self._eval_attributes(root, scope, ctx)
        await self._process_children(root, scope, ctx)
        ET.indent(root, space="  ")
        return '<?xml version="1.0" ?>\n' + ET.tostring(
            root, encoding="unicode"
        ) + "\n"

    # -- Tree walk --

    async def _process_children(
        self, parent: ET.Element, scope: Scope, ctx: _Context
    ) -> None:
        children = list(parent)
        for child in children:
            parent.remove(child)
        if parent.text:
            parent.text = self._eval_string(parent.text, scope, ctx)
        for child in children:
            tail, child.tail = child.tail, None
            for node in await self._process_node(child, parent, scope, ctx):
                parent.append(node)
            if tail and tail.strip():
                _append_text(parent, self._eval_string(tail, scope, ctx))

    async def _process_node(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        if not isinstance(elem.tag, str):
            return [elem]
        ns, local = split_tag(elem.tag)
        if ns not in XACRO_NAMESPACES:
            self._eval_attributes(elem, scope, ctx)
            await self._process_children(elem, scope, ctx)
            return [elem]

        directive = self._directives.get(local)
        if directive is not None:
            return await directive(elem, parent, scope, ctx)
        if local in self._macros:
            return await self._expand_macro(
                self._macros[local], elem, parent, scope, ctx
            )
        raise self._error(f"Unknown macro name: xacro:{local}", ctx)

    def _splice(
        self, container: ET.Element, parent: ET.Element
    ) -> list[ET.Element]:
        if container.text and container.text.strip():
            _append_text(parent, container.text)
        return list(container)

    def _eval_attributes(
        self, elem: ET.Element, scope: Scope, ctx: _Context
    ) -> None:
        for key, value in list(elem.attrib.items()):
            ns, _ = split_tag(key)
            if ns in XACRO_NAMESPACES:
                del elem.attrib[key]
            else:
                elem.set(key, self._eval_string(value, scope, ctx))

    # -- Directives --

    async def _property(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        name = self._required(elem, "name", ctx)
        target = self._scope_target(elem, scope)
        if "value" in elem.attrib:
            target[name] = self._define(
                name, elem.attrib["value"], target, scope, ctx
            )
        elif "default" in elem.attrib:
            if name not in scope:
                target[name] = self._define(
                    name, elem.attrib["default"], target, scope, ctx
                )
        else:
            target[name] = _Block(list(elem))
        return []

    def _define(
        self,
        name: str,
        text: str,
        table: dict[str, Any],
        scope: Scope,
        ctx: _Context,
    ) -> Any:
        if "$" not in text:
            return _coerce(text)
        # A redefinition in terms of itself reads the old value now
        if name in scope and re.search(rf"\b{re.escape(name)}\b", text):
            return _coerce(self._eval_text(text, scope, ctx))
        return _Deferred(name, text, scope, ctx, table)

    def _resolve(self, deferred: _Deferred) -> Any:
        if deferred.busy:
            raise _EvalError(
                f'circular definition of property "{deferred.name}"'
            )
        deferred.busy = True
        try:
            value = _coerce(
                self._eval_text(deferred.text, deferred.scope, deferred.ctx)
            )
        finally:
            deferred.busy = False
        if deferred.table.get(deferred.name) is deferred:
            deferred.table[deferred.name] = value
        return value

    def _scope_target(
        self, elem: ET.Element, scope: Scope
    ) -> dict[str, Any]:
        where = elem.get("scope")
        if where == "global":
            return self._globals
        if where == "parent" and len(scope.maps) > 1:
            return scope.maps[1]
        return scope.maps[0]

    async def _arg(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        name = self._required(elem, "name", ctx)
        if name not in self._args and "default" in elem.attrib:
            self._args[name] = self._eval_string(
                elem.attrib["default"], scope, ctx
            )
        return []

    async def _include(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        if ctx.depth >= self._max_include_depth:
            raise self._error(
                f"Include depth limit of {self._max_include_depth} exceeded",
                ctx,
            )
        filename = self._eval_string(
            self._required(elem, "filename", ctx), scope, ctx
        ).strip()
        # Relative to the including file; the fetch hook cleans up the
        # join for package:// and ./ paths
        path = f"{ctx.directory}/{filename}" if ctx.directory else filename
        text = await self._fetch(path)
        child_ctx = _Context(path, ctx.depth + 1)
        root = self._parse(text, child_ctx)
        await self._process_children(root, scope, child_ctx)
        logger.debug(
            "event=include_expanded path=%s depth=%d", path, child_ctx.depth
        )
        return self._splice(root, parent)

    async def _macro(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        name = self._required(elem, "name", ctx).removeprefix("xacro:")
        params = self._parse_params(elem.get("params", ""), name, ctx)
        elem.attrib.clear()
        self._macros[name] = _Macro(name=name, params=params, body=elem)
        return []

    async def _if(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        return await self._conditional(elem, parent, scope, ctx, True)

    async def _unless(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        return await self._conditional(elem, parent, scope, ctx, False)

    async def _conditional(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
        keep_when: bool,
    ) -> list[ET.Element]:
        raw = self._required(elem, "value", ctx)
        value = self._eval_text(raw, scope, ctx)
        if self._truth(value, raw, ctx) != keep_when:
            return []
        await self._process_children(elem, scope, ctx)
        return self._splice(elem, parent)

    async def _element(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        raw_name = _xacro_attr(elem, "name")
        if raw_name is None:
            raise self._error("xacro:element requires xacro:name", ctx)
        built = ET.Element(self._eval_string(raw_name, scope, ctx))
        built.attrib.update(elem.attrib)
        built.text = elem.text
        built.extend(list(elem))
        self._eval_attributes(built, scope, ctx)
        await self._process_children(built, scope, ctx)
        return [built]

    async def _attribute(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        name = self._eval_string(self._required(elem, "name", ctx), scope, ctx)
        value = self._eval_string(
            self._required(elem, "value", ctx), scope, ctx
        )
        parent.set(name, value)
        return []

    async def _insert_block(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        name = self._eval_string(self._required(elem, "name", ctx), scope, ctx)
        block = scope.get(name)
        if not isinstance(block, _Block):
            raise self._error(f'Undefined block "{name}"', ctx)
        container = ET.Element("block")
        container.extend(copy.deepcopy(block.elements))
        if not block.evaluated:
            await self._process_children(container, scope, ctx)
        return self._splice(container, parent)

    async def _call(
        self,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        name = self._eval_string(
            self._required(elem, "macro", ctx), scope, ctx
        ).removeprefix("xacro:")
        macro = self._macros.get(name)
        if macro is None:
            raise self._error(f"Unknown macro name: {name}", ctx)
        del elem.attrib["macro"]
        return await self._expand_macro(macro, elem, parent, scope, ctx)

    # -- Macros --

    def _parse_params(
        self, declared: str, macro: str, ctx: _Context
    ) -> list[_MacroParam]:
        try:
            tokens = shlex.split(declared)
        except ValueError as exc:
            raise self._error(
                f'Malformed params of macro "{macro}": {exc}', ctx
            ) from exc

        params: list[_MacroParam] = []
        for token in tokens:
            stars = len(token) - len(token.lstrip("*"))
            name, sep, default = token[stars:].partition(":=")
            if stars > 2 or not name.isidentifier():
                raise self._error(
                    f'Invalid parameter "{token}" in macro "{macro}"', ctx
                )
            param = _MacroParam(name=name, block=stars)
            if sep:
                if stars:
                    raise self._error(
                        f'Block parameter "{name}" of macro "{macro}" '
                        "cannot have a default",
                        ctx,
                    )
                if default.startswith("^"):
                    param.inherit = True
                    _, bar, fallback = default.partition("|")
                    param.default = fallback if bar else None
                else:
                    param.default = default
            params.append(param)
        return params

    async def _expand_macro(
        self,
        macro: _Macro,
        elem: ET.Element,
        parent: ET.Element,
        scope: Scope,
        ctx: _Context,
    ) -> list[ET.Element]:
        if self._macro_depth >= MAX_MACRO_DEPTH:
            raise self._error(
                f'Recursion limit reached while expanding macro "{macro.name}"',
                ctx,
            )
        by_name = {p.name: p for p in macro.params}
        local: dict[str, Any] = {}

        for key, raw in elem.attrib.items():
            ns, attr = split_tag(key)
            if ns in XACRO_NAMESPACES:
                continue
            param = by_name.get(attr)
            if param is None or param.block:
                raise self._error(
                    f'Invalid parameter "{attr}" while expanding macro '
                    f'"{macro.name}"',
                    ctx,
                )
            local[attr] = _coerce(self._eval_text(raw, scope, ctx))

        children = list(elem)
        for param in (p for p in macro.params if p.block):
            if not children:
                raise self._error(
                    f'Not enough blocks while expanding macro "{macro.name}"',
                    ctx,
                )
            child = children.pop(0)
            child.tail = None
            holder = ET.Element("block")
            holder.append(child)
            await self._process_children(holder, scope, ctx)
            if param.block == 1:
                elements = list(holder)
            else:
                elements = [grand for node in holder for grand in node]
            local[param.name] = _Block(elements, evaluated=True)

        call_scope = scope.new_child(local)
        missing: list[str] = []
        for param in macro.params:
            if param.block or param.name in local:
                continue
            if param.inherit and param.name in scope:
                local[param.name] = scope[param.name]
            elif param.default is not None:
                local[param.name] = _coerce(
                    self._eval_text(param.default, call_scope, ctx)
                )
            else:
                missing.append(param.name)
        if missing:
            raise self._error(
                f"Undefined parameters [{', '.join(missing)}] in call to "
                f'macro "{macro.name}"',
                ctx,
            )

        body = copy.deepcopy(macro.body)
        self._macro_depth += 1
        try:
            await self._process_children(body, call_scope, ctx)
        finally:
            self._macro_depth -= 1
        return self._splice(body, parent)

    # -- Text evaluation --

    def _eval_text(self, text: str, scope: Scope, ctx: _Context) -> Any:
        """Evaluate ``${}`` and ``$()`` in *text*.

        A value that is a single expression keeps its type; anything
        else is concatenated into a string.
        """
        if "$" not in text:
            return text
        parts = self._tokenize(text, ctx)
        if len(parts) == 1 and parts[0][0] != "text":
            return self._eval_part(parts[0], scope, ctx)
        return "".join(
            body if kind == "text" else _render(
                self._eval_part((kind, body), scope, ctx)
            )
            for kind, body in parts
        )

    def _eval_string(self, text: str, scope: Scope, ctx: _Context) -> str:
        return _render(self._eval_text(text, scope, ctx))

    def _tokenize(self, text: str, ctx: _Context) -> list[tuple[str, str]]:
        parts: list[tuple[str, str]] = []
        buf: list[str] = []
        i = 0
        while i < len(text):
            if text.startswith(("$${", "$$("), i):
                buf.append(text[i + 1 : i + 3])
                i += 3
                continue
            if text.startswith(("${", "$("), i):
                open_ch = text[i + 1]
                close_ch = "}" if open_ch == "{" else ")"
                end = _find_close(text, i + 1, open_ch, close_ch)
                if end < 0:
                    raise self._error(
                        f"Unterminated expression in '{text}'", ctx
                    )
                if buf:
                    parts.append(("text", "".join(buf)))
                    buf = []
                kind = "expr" if open_ch == "{" else "subst"
                parts.append((kind, text[i + 2 : end]))
                i = end + 1
                continue
            buf.append(text[i])
            i += 1
        if buf:
            parts.append(("text", "".join(buf)))
        return parts

    def _eval_part(
        self, part: tuple[str, str], scope: Scope, ctx: _Context
    ) -> Any:
        kind, body = part
        if kind == "expr":
            return self._evaluate(body, scope, ctx)
        return self._substitute(body, scope, ctx)

    def _evaluate(self, expr: str, scope: Scope, ctx: _Context) -> Any:
        try:
            return _Evaluator(scope, self._resolve).evaluate(expr)
        except (
            _EvalError,
            ArithmeticError,
            TypeError,
            ValueError,
            LookupError,
        ) as exc:
            raise self._error(
                f"Cannot evaluate expression '{expr}': {exc}", ctx
            ) from exc

    def _substitute(self, body: str, scope: Scope, ctx: _Context) -> Any:
        try:
            words = shlex.split(body)
        except ValueError as exc:
            raise self._error(
                f"Malformed substitution '$({body})': {exc}", ctx
            ) from exc
        if not words:
            raise self._error("Empty substitution '$()'", ctx)

        command, args = words[0], words[1:]
        if command == "arg" and len(args) == 1:
            if args[0] not in self._args:
                raise self._error(
                    f"Undefined substitution argument {args[0]}", ctx
                )
            return self._args[args[0]]
        if command == "find" and len(args) == 1:
            return f"package://{args[0]}"
        if command == "env" and len(args) == 1:
            if args[0] not in self._env:
                raise self._error(
                    f'Environment variable "{args[0]}" is not set', ctx
                )
            return self._env[args[0]]
        if command == "optenv" and args:
            return self._env.get(args[0], " ".join(args[1:]))
        if command == "eval":
            return self._evaluate(body.strip()[len("eval") :], scope, ctx)
        if command == "dirname" and not args:
            return ctx.directory
        raise self._error(f"Unsupported substitution '$({body})'", ctx)

    # -- Helpers --

    def _truth(self, value: Any, raw: str, ctx: _Context) -> bool:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "1"):
                return True
            if lowered in ("false", "0"):
                return False
            raise self._error(
                f'Xacro conditional "{raw}" evaluated to "{value}", '
                "which is not a boolean expression.",
                ctx,
            )
        return bool(value)

    def _required(self, elem: ET.Element, attr: str, ctx: _Context) -> str:
        value = elem.get(attr)
        if value is None:
            _, local = split_tag(elem.tag)
            raise self._error(
                f'xacro:{local} is missing the "{attr}" attribute', ctx
            )
        return value

    def _parse(self, text: str, ctx: _Context) -> ET.Element:
        try:
            return ET.fromstring(text)
        except ET.ParseError as exc:
            raise self._error(f"Invalid XML: {exc}", ctx) from exc

    @staticmethod
    def _error(message: str, ctx: _Context) -> ExpansionGrammarError:
        return ExpansionGrammarError(message, path=ctx.path)


# ── Public engine ───────────────────────────────────────


class XacroEngine:
    """Default macro engine.

    Stateless between calls: every :meth:`expand` starts with empty
    property and macro tables, seeded only with the ``args`` given here.
    """

    def __init__(
        self,
        args: Mapping[str, str] | None = None,
        env: Mapping[str, str] | None = None,
        max_include_depth: int = MAX_INCLUDE_DEPTH,
    ) -> None:
        self._args = dict(args or {})
        self._env = env if env is not None else os.environ
        self._max_include_depth = max_include_depth

    async def expand(
        self,
        text: str,
        fetch_include: IncludeFetcher,
        source_path: str | None = None,
    ) -> str:
        expansion = _Expansion(
            fetch_include,
            env=self._env,
            args=self._args,
            max_include_depth=self._max_include_depth,
        )
        return await expansion.run(text, source_path)
