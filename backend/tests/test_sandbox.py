"""Tests for the restricted script sandbox."""

import asyncio
import json
import time

import pytest

from librarian_rlm.bridges.repo import LocalRepoBridge
from librarian_rlm.exceptions import ConfigurationError, SandboxViolationError
from librarian_rlm.sandbox.executor import RestrictedScriptExecutor
from librarian_rlm.sandbox.policy import GlobalPolicy, guarded_getattr
from librarian_rlm.sandbox.transformer import compile_script
from librarian_rlm.sandbox.utils import batch, chunk, stringify_value
from librarian_rlm.types import ScriptOutcome


async def run_script(script, **kwargs):
    executor = RestrictedScriptExecutor(timeout=kwargs.pop("timeout", 5))
    kwargs.setdefault("repo", None)
    kwargs.setdefault("llm_query", None)
    return await executor.execute(script, **kwargs)


class SlowRepoBridge(LocalRepoBridge):
    """Bridge whose directory walk blocks for a while."""

    def _walk_files(self, base, recursive=True):
        time.sleep(1.5)
        yield from super()._walk_files(base, recursive)


class TestScriptHelpers:
    """Test helpers exposed to scripts."""

    def test_chunk_splits_in_order(self):
        """Test chunk() returns ordered, non-overlapping pieces."""
        assert chunk("abcdefg", 3) == ["abc", "def", "g"]
        assert "".join(chunk("x" * 1001, 100)) == "x" * 1001

    def test_chunk_stringifies_input(self):
        """Test chunk() works on str(data)."""
        assert chunk(12345, 2) == ["12", "34", "5"]
        assert chunk("", 5) == []

    def test_batch_splits_lists(self):
        """Test batch() groups items, last group may be shorter."""
        assert batch([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    @pytest.mark.parametrize("size", [0, -1])
    def test_non_positive_size_rejected(self, size):
        """Test chunk() and batch() reject sizes below one."""
        with pytest.raises(ValueError):
            chunk("abc", size)
        with pytest.raises(ValueError):
            batch([1], size)

    def test_stringify_value(self):
        """Test strings pass through and other values become compact JSON."""
        assert stringify_value("plain") == "plain"
        assert stringify_value(["a", "b"]) == '["a","b"]'
        assert stringify_value({"n": 1}) == '{"n":1}'
        assert stringify_value(42) == "42"


class TestCompilation:
    """Test restricted compilation of scripts."""

    def test_top_level_await_compiles(self):
        """Test a script using await at top level compiles."""
        code = compile_script("await asyncio.sleep(0)\nreturn 1")
        assert code is not None

    def test_syntax_error_raises(self):
        """Test invalid syntax is rejected."""
        with pytest.raises(SyntaxError):
            compile_script("def broken(:\n    pass")

    def test_underscore_names_rejected(self):
        """Test names starting with an underscore are rejected."""
        with pytest.raises(SyntaxError):
            compile_script("x = ().__class__")

    def test_eval_call_rejected(self):
        """Test eval() calls are rejected at compile time."""
        with pytest.raises(SyntaxError):
            compile_script("eval('1 + 1')")


class TestPolicy:
    """Test the global allow/deny policy."""

    def test_blocked_names_are_none(self):
        """Test dangerous names are bound to None."""
        builtins_table = GlobalPolicy().build_builtins({})
        for name in ("open", "eval", "exec", "compile", "process", "require", "fetch", "Buffer", "os"):
            assert builtins_table[name] is None

    def test_extra_blocked_names(self):
        """Test configured names are added to the deny-list."""
        policy = GlobalPolicy(blocked_names=["sorted"])
        assert policy.build_builtins({})["sorted"] is None

    def test_unknown_modules_ignored(self):
        """Test unknown module names are dropped from the allow-list."""
        policy = GlobalPolicy(allowed_modules=["json", "nope"])
        assert policy.allowed_modules == ["json"]

    def test_globals_are_fresh_per_build(self):
        """Test each build gets its own module namespaces."""
        policy = GlobalPolicy()
        first = policy.build_globals({})
        second = policy.build_globals({})
        assert first["json"] is not second["json"]

    def test_guarded_getattr_blocks_private_names(self):
        """Test underscore attributes cannot be reached."""
        with pytest.raises(SandboxViolationError):
            guarded_getattr("text", "__class__")

    def test_guarded_getattr_blocks_str_format(self):
        """Test str.format is not reachable."""
        with pytest.raises(SandboxViolationError):
            guarded_getattr("{0}", "format")

    def test_guarded_getattr_blocks_str_class_format(self):
        """Test format and format_map are blocked on the str class too."""
        for name in ("format", "format_map"):
            with pytest.raises(SandboxViolationError):
                guarded_getattr(str, name)

    @pytest.mark.asyncio
    async def test_class_level_format_cannot_read_environment(self, monkeypatch):
        """Test str.format replacement fields cannot walk to os.environ."""
        monkeypatch.setenv("RLM_TEST_SECRET", "hunter2")
        scripts = [
            'print(str.format("{0.__globals__[asyncio].events.os.environ[RLM_TEST_SECRET]}", getattr))',
            'print(str.format_map("{f.__globals__[asyncio].events.os.getcwd}", {"f": getattr}))',
        ]
        for script in scripts:
            result = await run_script(script)

            assert result.error.startswith("SandboxViolationError")
            assert "hunter2" not in result.stdout
            assert "built-in function" not in result.stdout

    def test_guarded_getattr_default(self):
        """Test getattr with a default for missing attributes."""
        assert guarded_getattr("text", "missing", 7) == 7


class TestRestrictedScriptExecutor:
    """Test script execution."""

    @pytest.mark.asyncio
    async def test_print_and_buffers(self):
        """Test print() output and buffer writes persist on the result."""
        buffers = {}
        result = await run_script(
            'buffers["names"] = ["a", "b"]\nprint("found", 2)\nprint("done")',
            buffers=buffers,
        )

        assert result.error is None
        assert result.stdout == "found 2\ndone"
        assert result.buffers is buffers
        assert buffers["names"] == ["a", "b"]
        assert result.outcome == ScriptOutcome.CONTINUED
        assert result.final_answer is None

    @pytest.mark.asyncio
    async def test_context_is_visible(self):
        """Test the context binding."""
        result = await run_script("print(len(context))", context="hello")
        assert result.stdout == "5"

    @pytest.mark.asyncio
    async def test_safe_globals_usable(self):
        """Test allowed builtins and module namespaces work."""
        script = """
import json
from collections import Counter

async def double(n):
    await asyncio.sleep(0)
    return n * 2

values = await asyncio.gather(double(1), double(2))
counts = Counter(["a", "b", "a"])
found = re.findall(r"\\d+", "a1b22")
print(math.sqrt(16), json.dumps(sorted(set(values))), dict(counts)["a"], list(found))
"""
        result = await run_script(script)

        assert result.error is None, result.error
        assert result.stdout == "4.0 [2, 4] 2 ['1', '22']"

    @pytest.mark.asyncio
    async def test_big_integers(self):
        """Test arbitrary precision integers."""
        result = await run_script("print(2 ** 100)")
        assert result.stdout == str(2 ** 100)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["open", "process", "require", "fetch", "Buffer"])
    async def test_blocked_globals_are_none(self, name):
        """Test blocked globals are bound to None."""
        result = await run_script(f"print({name} is None)")
        assert result.stdout == "True"

    @pytest.mark.asyncio
    async def test_open_fails(self):
        """Test calling a blocked builtin fails."""
        result = await run_script("open('/etc/passwd')")
        assert result.error is not None
        assert result.error.startswith("TypeError")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("script", ["eval('1')", "exec('x = 1')", "compile('1', 'f', 'eval')"])
    async def test_code_from_string_fails(self, script):
        """Test eval/exec/compile cannot run."""
        result = await run_script(script)
        assert result.error is not None
        assert result.outcome == ScriptOutcome.FAILED

    @pytest.mark.asyncio
    async def test_disallowed_import(self):
        """Test importing a module outside the catalogue fails."""
        result = await run_script("import os")
        assert result.error == "ImportError: Import of 'os' is not allowed in the sandbox"

    @pytest.mark.asyncio
    async def test_violation_catchable_in_script(self):
        """Test policy violations surface as ordinary exceptions."""
        script = """
try:
    import subprocess
except ImportError as e:
    print("blocked")
"""
        result = await run_script(script)
        assert result.error is None
        assert result.stdout == "blocked"

    @pytest.mark.asyncio
    async def test_runtime_error_echo(self):
        """Test errors are reported and echoed to stdout."""
        result = await run_script('print("before")\nraise ValueError("boom")')

        assert result.error == "ValueError: boom"
        assert result.stdout.splitlines()[-1] == "Script Error: ValueError: boom"
        assert result.stdout.startswith("before")
        assert result.outcome == ScriptOutcome.FAILED

    @pytest.mark.asyncio
    async def test_syntax_error_reported(self):
        """Test syntax errors are reported, not raised."""
        result = await run_script("if True print('x')")
        assert result.error.startswith("SyntaxError")
        assert "Script Error: SyntaxError" in result.stdout

    @pytest.mark.asyncio
    async def test_script_too_long(self):
        """Test oversized scripts are rejected."""
        executor = RestrictedScriptExecutor(max_script_length=1000)
        result = await executor.execute("x = 1\n" * 500, repo=None, llm_query=None)
        assert result.error.startswith("ScriptError: Script too long")

    @pytest.mark.asyncio
    async def test_return_value(self):
        """Test a top-level return is reported as the return value."""
        result = await run_script('return {"count": 3}')
        assert result.outcome == ScriptOutcome.RETURNED
        assert result.return_value == {"count": 3}
        assert result.final_answer is None


class TestCompletionIntrinsics:
    """Test FINAL and FINAL_VAR inside scripts."""

    @pytest.mark.asyncio
    async def test_final_stops_script(self):
        """Test FINAL records the answer and stops execution."""
        result = await run_script('FINAL("done")\nprint("unreachable")')

        assert result.final_answer == "done"
        assert result.outcome == ScriptOutcome.FINALIZED
        assert result.stdout == ""
        assert result.error is None

    @pytest.mark.asyncio
    async def test_final_stringifies(self):
        """Test non-string answers are rendered as compact JSON."""
        result = await run_script('FINAL({"a": [1, 2]})')
        assert result.final_answer == '{"a":[1,2]}'

    @pytest.mark.asyncio
    async def test_final_var_uses_existing_buffer(self):
        """Test FINAL_VAR on a buffer from an earlier execution."""
        result = await run_script('FINAL_VAR("names")', buffers={"names": ["a", "b"]})
        assert result.final_answer == '["a","b"]'

    @pytest.mark.asyncio
    async def test_final_var_same_execution(self):
        """Test FINAL_VAR sees a key written earlier in the same script."""
        result = await run_script('buffers["summary"] = "all good"\nFINAL_VAR("summary")')
        assert result.final_answer == "all good"
        assert result.outcome == ScriptOutcome.FINALIZED

    @pytest.mark.asyncio
    async def test_final_var_missing_key(self):
        """Test FINAL_VAR on a missing key is an error with no answer."""
        result = await run_script('FINAL_VAR("missing")')

        assert result.final_answer is None
        assert result.error == "BufferNotFoundError: Buffer 'missing' not found"

    @pytest.mark.asyncio
    async def test_final_wins_over_return(self):
        """Test FINAL takes precedence over a value returned afterwards."""
        script = """
try:
    FINAL("explicit")
finally:
    return "returned"
"""
        result = await run_script(script)
        assert result.final_answer == "explicit"
        assert result.outcome == ScriptOutcome.FINALIZED
        assert result.return_value is None


class TestTimeouts:
    """Test the wall-clock ceiling."""

    @pytest.mark.asyncio
    async def test_pending_await_times_out(self):
        """Test a never-finishing await is cut off."""
        start = time.time()
        result = await run_script("await asyncio.sleep(30)", timeout=0.5)

        assert time.time() - start < 5
        assert result.error == "ScriptTimeoutError: Script timed out after 0.5 seconds"

    @pytest.mark.asyncio
    async def test_cpu_loop_times_out(self):
        """Test a busy loop does not block the caller past the timeout."""
        start = time.time()
        result = await run_script("n = 0\nwhile True:\n    n = n + 1", timeout=0.5)

        assert time.time() - start < 5
        assert result.error.startswith("ScriptTimeoutError")

    @pytest.mark.asyncio
    async def test_host_loop_stays_responsive(self):
        """Test the caller's event loop keeps running during a busy script."""
        ticks = []

        async def ticker():
            for _ in range(3):
                await asyncio.sleep(0.05)
                ticks.append(1)

        await asyncio.gather(
            run_script("n = 0\nwhile n < 10 ** 9:\n    n = n + 1", timeout=0.5),
            ticker(),
        )
        assert len(ticks) == 3

    @pytest.mark.parametrize("timeout", [0, -1])
    def test_non_positive_timeout_rejected(self, timeout):
        """Test a non-positive timeout is a configuration error."""
        with pytest.raises(ConfigurationError):
            RestrictedScriptExecutor(timeout=timeout)

    @pytest.mark.asyncio
    async def test_timeout_fires_during_slow_repo_call(self, tmp_path):
        """Test a long directory walk does not hold up the timeout."""
        (tmp_path / "main.py").write_text("x = 1\n")
        start = time.time()
        result = await run_script(
            'print(await repo.find("*.py"))', timeout=0.3, repo=SlowRepoBridge(tmp_path)
        )

        assert time.time() - start < 1.2
        assert result.error.startswith("ScriptTimeoutError")


class TestBridgeBindings:
    """Test llm_query and repo from inside scripts."""

    @pytest.mark.asyncio
    async def test_llm_query_called_on_host(self):
        """Test llm_query calls reach the host function."""
        calls = []

        async def fake_query(instruction, data):
            calls.append((instruction, data))
            return "answer:" + instruction

        result = await run_script(
            'print(await llm_query("is it?", "code"))',
            llm_query=fake_query,
        )

        assert result.error is None
        assert result.stdout == "answer:is it?"
        assert calls == [("is it?", "code")]
        assert result.sub_llm_calls == 1

    @pytest.mark.asyncio
    async def test_llm_query_concurrent(self):
        """Test concurrent llm_query calls through asyncio.gather."""
        async def fake_query(instruction, data):
            await asyncio.sleep(0.01)
            return instruction.upper()

        result = await run_script(
            'out = await asyncio.gather(*[llm_query(x, "") for x in ["a", "b", "c"]])\nprint(json.dumps(out))',
            llm_query=fake_query,
        )
        assert json.loads(result.stdout) == ["A", "B", "C"]
        assert result.sub_llm_calls == 3

    @pytest.mark.asyncio
    async def test_llm_query_unavailable(self):
        """Test llm_query without a backing function fails cleanly."""
        result = await run_script('await llm_query("x", "y")')
        assert result.error == "ScriptError: llm_query is not available in this session"

    @pytest.mark.asyncio
    async def test_repo_calls(self, tmp_path):
        """Test repo methods are awaitable from scripts."""
        (tmp_path / "main.py").write_text("print('hi')\n")
        repo = LocalRepoBridge(tmp_path)

        result = await run_script(
            'listing = json.loads(await repo.list())\nprint(listing["entries"][0]["name"])',
            repo=repo,
        )
        assert result.error is None, result.error
        assert result.stdout == "main.py"

    @pytest.mark.asyncio
    async def test_repo_escape_is_script_error(self, tmp_path):
        """Test path escapes surface as script errors."""
        repo = LocalRepoBridge(tmp_path)
        result = await run_script('await repo.view("../../etc/passwd")', repo=repo)
        assert result.error.startswith("PathEscapeError")
        assert "attempts to escape the sandbox root" in result.error
