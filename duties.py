"""Development tasks for agent-bridge, run with `duty <task>`."""

from __future__ import annotations

from duty import duty  # pyright: ignore[reportMissingImports]


SOURCES = "src/agent_bridge"
TESTS = "tests"


@duty(capture=False)
def test(ctx, *args: str):
    """Run the test suite. Extra arguments are passed on to pytest."""
    ctx.run(["uv", "run", "pytest", *args])


@duty(capture=False)
def format(ctx):  # noqa: A001
    """Apply ruff fixes and formatting to sources and tests."""
    ctx.run(["uv", "run", "ruff", "check", "--fix", SOURCES, TESTS])
    ctx.run(["uv", "run", "ruff", "format", SOURCES, TESTS])


@duty(capture=False)
def typecheck(ctx):
    """Type check the package with mypy."""
    ctx.run(["uv", "run", "mypy", SOURCES])


@duty(capture=False, pre=["typecheck"])
def check(ctx):
    """Lint without modifying files, then type check."""
    ctx.run(["uv", "run", "ruff", "check", SOURCES, TESTS])
    ctx.run(["uv", "run", "ruff", "format", "--check", SOURCES, TESTS])


@duty(capture=False)
def sync(ctx):
    """Upgrade the lock file and install all extras."""
    ctx.run(["uv", "lock", "--upgrade"])
    ctx.run(["uv", "sync", "--all-extras"])
