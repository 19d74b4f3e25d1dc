"""Text rewrites applied to XACRO markup before it reaches the engine.

The engine's arithmetic grammar has no exponent operator, so ``A ** B``
inside ``${...}`` blocks is rewritten to ``pow(A,B)``.  ``$(find pkg)``
substitutions are turned into ``package://pkg`` URIs because there is no
ROS package index to consult; the path resolver already knows how to
match package URIs against uploaded files.
"""

from __future__ import annotations

import re

# ${...} expression block; $${ is the engine's escape for a literal ${
_EXPR_BLOCK_RE = re.compile(r"(?<!\$)\$\{(?P<body>[^{}]*)\}")

# Function call or parenthesized group without nested parentheses,
# or an identifier / number / dotted path.
_OPERAND = (
    r"(?:[A-Za-z_][\w.]*\([^()]*\)"
    r"|\([^()]*\)"
    r"|[\w.]+)"
)
_POWER_RE = re.compile(
    rf"(?P<base>{_OPERAND})\s*\*\*\s*(?P<exp>-?{_OPERAND})"
)

_FIND_RE = re.compile(r"\$\(find\s+(?P<pkg>[^)\s]+)\s*\)")


def _rewrite_expression(expr: str) -> str:
    """Rewrite one ``**`` at a time, leftmost first, until none match.

    Chains reduce left to right: ``a**b**c`` → ``pow(pow(a,b),c)``.
    """
    while True:
        expr, count = _POWER_RE.subn(
            lambda m: f"pow({m['base']},{m['exp']})", expr, count=1
        )
        if not count:
            return expr


def rewrite_power(text: str) -> str:
    """Rewrite ``**`` to ``pow()`` inside every ``${...}`` block.

    Content outside expression blocks passes through unchanged.
    """
    return _EXPR_BLOCK_RE.sub(
        lambda m: "${" + _rewrite_expression(m["body"]) + "}", text
    )


def rewrite_find(text: str) -> str:
    """Replace ``$(find pkg)`` with ``package://pkg``."""
    return _FIND_RE.sub(lambda m: f"package://{m['pkg']}", text)


def preprocess(text: str) -> str:
    """All rewrites, in the order the expander needs them."""
    return rewrite_power(rewrite_find(text))
