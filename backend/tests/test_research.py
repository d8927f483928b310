"""Tests for the single-shot research tool."""

import pytest

from librarian_rlm.bridges.repo import LocalRepoBridge
from librarian_rlm.core.research import NO_OUTPUT_MESSAGE, render_result, research_repository
from librarian_rlm.sandbox.executor import RestrictedScriptExecutor
from librarian_rlm.types import ExecutionResult


@pytest.fixture
def repo(tmp_path):
    (tmp_path / "main.py").write_text("def main():\n    pass\n")
    (tmp_path / "lib.py").write_text("VALUE = 1\n")
    return LocalRepoBridge(tmp_path)


async def echo_query(instruction, data=""):
    return f"analysis of {len(data)} chars"


def run(script, repo, llm_query=echo_query):
    return research_repository(
        script, repo, llm_query, executor=RestrictedScriptExecutor(timeout=5)
    )


class TestRenderResult:
    """Test the rendering precedence."""

    def test_error_first(self):
        """Test errors win over everything else."""
        result = ExecutionResult(stdout="partial", buffers={}, final_answer="x", error="ValueError: v")
        assert render_result(result) == "Script execution error: ValueError: v"

    def test_final_answer_over_stdout(self):
        """Test the final answer wins over printed output."""
        result = ExecutionResult(stdout="printed", buffers={}, final_answer="answer")
        assert render_result(result) == "answer"

    def test_stdout_over_return_value(self):
        """Test printed output wins over a return value."""
        result = ExecutionResult(stdout="printed", buffers={}, return_value=3)
        assert render_result(result) == "printed"

    def test_return_value_json(self):
        """Test non-string return values are pretty-printed JSON."""
        result = ExecutionResult(stdout="", buffers={}, return_value={"files": 2})
        assert render_result(result) == '{\n  "files": 2\n}'

    def test_return_value_string(self):
        """Test string return values are used as-is."""
        result = ExecutionResult(stdout="", buffers={}, return_value="plain")
        assert render_result(result) == "plain"

    def test_nothing(self):
        """Test the fallback message."""
        assert render_result(ExecutionResult(stdout="", buffers={})) == NO_OUTPUT_MESSAGE


class TestResearchRepository:
    """Test running scripts through research_repository()."""

    @pytest.mark.asyncio
    async def test_stdout(self, repo):
        """Test printed output is returned."""
        text = await run(
            'import json\nfound = json.loads(await repo.find("*.py"))\nprint(found["total"])',
            repo,
        )
        assert text == "2"

    @pytest.mark.asyncio
    async def test_return_value(self, repo):
        """Test a returned value is rendered."""
        text = await run('return {"answer": 42}', repo)
        assert text == '{\n  "answer": 42\n}'

    @pytest.mark.asyncio
    async def test_final(self, repo):
        """Test FINAL() output is returned."""
        text = await run('FINAL("all done")', repo)
        assert text == "all done"

    @pytest.mark.asyncio
    async def test_error(self, repo):
        """Test failures are rendered instead of raised."""
        text = await run('await repo.view("../outside")', repo)
        assert text.startswith("Script execution error: PathEscapeError")

    @pytest.mark.asyncio
    async def test_fresh_state(self, repo):
        """Test every call starts with empty buffers and no context."""
        await run('buffers["leftover"] = 1', repo)
        text = await run("print(len(buffers), repr(context))", repo)
        assert text == "0 ''"

    @pytest.mark.asyncio
    async def test_llm_query(self, repo):
        """Test llm_query() is wired through."""
        text = await run(
            'source = await repo.view("main.py")\nprint(await llm_query("Explain", source))',
            repo,
        )
        assert text.startswith("analysis of")

    @pytest.mark.asyncio
    async def test_no_output(self, repo):
        """Test a silent script."""
        assert await run("x = 1", repo) == NO_OUTPUT_MESSAGE
