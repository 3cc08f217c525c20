from __future__ import annotations

import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence


class ToolNotFoundError(RuntimeError):
    pass


class ToolError(RuntimeError):
    pass


def _bundled_candidates(name: str) -> List[Path]:
    exe = f"{name}.exe" if os.name == "nt" else name
    if getattr(sys, "frozen", False):
        base = Path(sys.executable).resolve().parent
        return [base / exe, base / "_internal" / exe]
    script_dir = Path(__file__).resolve().parent
    repo_root = script_dir.parent
    return [script_dir / exe, script_dir / "tools" / exe, repo_root / exe]


def resolve_tool(name: str, override: str | Path | None = None) -> Path:
    """Locate an external tool: explicit path, then bundled copy, then PATH."""
    if override:
        candidate = Path(override)
        if candidate.is_file():
            return candidate
        found = shutil.which(str(override))
        if found:
            return Path(found)
        raise ToolNotFoundError(f"{name} not found at {override}")
    for candidate in _bundled_candidates(name):
        if candidate.is_file():
            return candidate
    found = shutil.which(name)
    if found:
        return Path(found)
    raise ToolNotFoundError(f"Required tool '{name}' is not installed or not on PATH")


def require_tools(names: Sequence[str], overrides: Optional[Mapping[str, str | Path | None]] = None) -> Dict[str, Path]:
    overrides = overrides or {}
    return {name: resolve_tool(name, overrides.get(name)) for name in names}


def run_tool(cmd: Sequence[str | Path], timeout: float) -> subprocess.CompletedProcess:
    args = [str(part) for part in cmd]
    name = Path(args[0]).name
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise ToolError(f"{name} timed out after {timeout:.0f}s") from None
    except FileNotFoundError:
        raise ToolNotFoundError(f"{name} disappeared: {args[0]}") from None
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip().splitlines()
        raise ToolError(f"{name} exited with {result.returncode}: {detail[-1] if detail else 'no output'}")
    return result
