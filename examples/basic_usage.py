"""
Example: Basic Librarian RLM Usage

This example researches a small throwaway repository with a mock
controlling model, so it runs without API keys. Swap MockLLMClient for
LiteLLMClient() to drive it with a real model.
"""

import asyncio
import tempfile
from pathlib import Path

from librarian_rlm import (
    LocalRepoBridge,
    MockLLMClient,
    ResearchLoop,
    RLMEngine,
    create_llm_query,
    research_repository,
)

FIRST_SCRIPT = '''```python
import json
found = json.loads(await repo.find("*.py"))
buffers["files"] = found["matches"]
print("found", found["total"], "python files")
```'''

SECOND_SCRIPT = '''```python
import json
hits = json.loads(await repo.grep("def ", patterns=["*.py"]))
buffers["functions"] = [m["file"] + ":" + str(m["line"]) for m in hits["matches"]]
FINAL_VAR("functions")
```'''


def make_repo(root: Path) -> None:
    (root / "app").mkdir()
    (root / "app" / "main.py").write_text("def main():\n    return serve()\n")
    (root / "app" / "server.py").write_text("def serve():\n    return 'ok'\n")
    (root / "README.md").write_text("# Demo app\n")


async def loop_example(root: Path):
    """Full research loop with a scripted controlling model."""
    print("=" * 60)
    print("Research loop")
    print("=" * 60)

    root_client = MockLLMClient(responses=[FIRST_SCRIPT, SECOND_SCRIPT])
    sub_client = MockLLMClient(response_template="Looks like a request handler.")

    engine = RLMEngine(
        repo_content_loader=lambda: "",
        repo=LocalRepoBridge(root),
        llm_query=create_llm_query(sub_client),
    )
    loop = ResearchLoop(engine, root_client)

    async for event in loop.stream("Where are the functions defined?"):
        print(f"  [{event.type.value}] {event.data}")

    state = engine.get_state()
    print(f"\n✓ Iterations: {state.iteration}")
    print(f"✓ Answer: {state.final_answer}")


async def single_script_example(root: Path):
    """Run one script directly, no controlling model involved."""
    print("\n" + "=" * 60)
    print("Single script")
    print("=" * 60)

    sub_client = MockLLMClient(response_template="It starts the server.")
    text = await research_repository(
        'source = await repo.view("app/main.py")\n'
        'print(await llm_query("What does main() do?", source))',
        repo=LocalRepoBridge(root),
        llm_query=create_llm_query(sub_client),
    )
    print(text)


async def main():
    """Run all examples."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        make_repo(root)
        await loop_example(root)
        await single_script_example(root)

    print("\n" + "=" * 60)
    print("All examples completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
