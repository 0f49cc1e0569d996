"""Code execution tool backed by local interpreter subprocesses.

The code runs on the gateway host with the gateway's permissions. The tool
is marked dangerous and is disabled unless ``tools.code_execution`` is set.
"""

import asyncio
import logging
import shutil
import time
from typing import Any, Literal

from chatgate.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# Interpreter argv per language; the code is passed as the final argument
INTERPRETERS: dict[str, list[str]] = {
    "python": ["python3", "-c"],
    "bash": ["bash", "-c"],
    "javascript": ["node", "-e"],
}

# Per-stream output cap returned to the model
MAX_OUTPUT_CHARS = 20_000


def _truncate(text: str) -> str:
    if len(text) > MAX_OUTPUT_CHARS:
        omitted = len(text) - MAX_OUTPUT_CHARS
        return text[:MAX_OUTPUT_CHARS] + f"\n... (truncated, {omitted} chars omitted)"
    return text


async def run_code(language: str, code: str, timeout_ms: int) -> dict[str, Any]:
    """Run ``code`` with the interpreter for ``language``.

    Args:
        language: One of the keys of INTERPRETERS
        code: Source to execute
        timeout_ms: Wall-clock limit in milliseconds

    Returns:
        Dict with stdout, stderr, exit_code and duration

    Raises:
        RuntimeError: If the interpreter is missing
        TimeoutError: If the process exceeds the timeout (it is killed)
    """
    argv = INTERPRETERS[language]
    if shutil.which(argv[0]) is None:
        raise RuntimeError(f"Interpreter not available for {language}: {argv[0]}")

    start = time.perf_counter()
    process = await asyncio.create_subprocess_exec(
        *argv,
        code,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
    except TimeoutError:
        process.kill()
        await process.wait()
        raise TimeoutError(f"Execution timed out after {timeout_ms}ms") from None
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    duration_ms = round((time.perf_counter() - start) * 1000, 3)
    logger.debug(f"{language} execution exited with {process.returncode} in {duration_ms}ms")

    return {
        "language": language,
        "stdout": _truncate(stdout.decode("utf-8", errors="replace")),
        "stderr": _truncate(stderr.decode("utf-8", errors="replace")),
        "exit_code": process.returncode,
        "duration_ms": duration_ms,
    }


def register_code_execution_tool(registry: ToolRegistry, max_timeout_ms: int = 30000) -> None:
    """Register code_execute on ``registry``.

    Args:
        registry: Registry to add the tool to
        max_timeout_ms: Upper bound applied to the requested timeout
    """

    @registry.tool(description="Execute code in a subprocess on the gateway host", dangerous=True)
    async def code_execute(
        code: str,
        language: Literal["javascript", "python", "bash"],
        timeout: int = 30000,
    ) -> dict[str, Any]:
        """Execute a code snippet.

        Args:
            code: Code to execute
            language: Programming language
            timeout: Execution timeout in milliseconds
        """
        timeout_ms = min(max(100, timeout), max_timeout_ms)
        return await run_code(language, code, timeout_ms)
