"""Restricted compilation of scripts into an awaitable function.

A script's statements become the body of ``async def rlm_script()`` so that
top-level ``await`` and ``return`` both work. The wrapped module then goes
through RestrictedPython, with a policy that also admits the async syntax
RestrictedPython refuses by default.
"""

import ast
from types import CodeType

from RestrictedPython import compile_restricted_exec
from RestrictedPython.transformer import RestrictingNodeTransformer

SCRIPT_FILENAME = "<rlm-script>"
SCRIPT_FUNCTION_NAME = "rlm_script"

_WRAPPER_SOURCE = f"async def {SCRIPT_FUNCTION_NAME}():\n    pass\n"


class AsyncRestrictingNodeTransformer(RestrictingNodeTransformer):
    """RestrictedPython policy that allows coroutines.

    Every other rule of the base policy still applies: no names starting with
    ``_``, no ``eval``/``exec`` calls, attribute and item access go through
    the guard functions.
    """

    def visit_AsyncFunctionDef(self, node):
        return self.visit_FunctionDef(node)

    def visit_Await(self, node):
        return self.node_contents_visit(node)

    def visit_AsyncFor(self, node):
        # Async iterables are consumed by the event loop, not by _getiter_
        return self.node_contents_visit(node)

    def visit_AsyncWith(self, node):
        return self.node_contents_visit(node)


def build_script_module(script: str) -> ast.Module:
    """Parse a script and wrap its statements in the async entry point.

    Raises:
        SyntaxError: If the script does not parse
    """
    body = ast.parse(script, filename=SCRIPT_FILENAME, mode="exec").body
    module = ast.parse(_WRAPPER_SOURCE, filename=SCRIPT_FILENAME, mode="exec")
    if body:
        module.body[0].body = body
    return ast.fix_missing_locations(module)


def compile_script(script: str) -> CodeType:
    """Compile a script under the restricted policy.

    Executing the returned code object defines ``rlm_script`` in the globals
    it runs against; nothing in the script body runs until that coroutine
    function is called.

    Raises:
        SyntaxError: On parse errors and on restricted-policy violations
    """
    module = build_script_module(script)
    result = compile_restricted_exec(
        module,
        filename=SCRIPT_FILENAME,
        policy=AsyncRestrictingNodeTransformer,
    )
    if result.errors:
        raise SyntaxError("; ".join(result.errors))
    return result.code
