from __future__ import annotations

import ast
from pathlib import Path


def _iter_py_files() -> list[Path]:
    repo_root = Path(__file__).parents[2]
    scripts_dir = repo_root / "scripts" / "deploy"
    return sorted([p for p in scripts_dir.glob("*.py") if p.is_file()])


def _is_os_environ(node: ast.AST) -> bool:
    # Matches os.environ
    if not isinstance(node, ast.Attribute) or node.attr != "environ":
        return False
    return isinstance(node.value, ast.Name) and node.value.id == "os"


def _literal_first_arg(node: ast.Call) -> str | None:
    if node.args and isinstance(node.args[0], ast.Constant) and isinstance(node.args[0].value, str):
        return node.args[0].value
    return None


def _literal_env_reads(tree: ast.AST) -> list[str]:
    found: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Call) and isinstance(node.func, ast.Attribute):
            key = _literal_first_arg(node)
            if key is None:
                continue
            # os.getenv("X")
            if node.func.attr == "getenv" and isinstance(node.func.value, ast.Name) and node.func.value.id == "os":
                found.append(f"os.getenv({key!r})")
            # os.environ.get("X")
            if node.func.attr == "get" and _is_os_environ(node.func.value):
                found.append(f"os.environ.get({key!r})")

        # os.environ["X"]
        if isinstance(node, ast.Subscript) and _is_os_environ(node.value):
            sl = node.slice
            if isinstance(sl, ast.Constant) and isinstance(sl.value, str):
                found.append(f"os.environ[{sl.value!r}]")
    return found


def test_detector_flags_literal_reads() -> None:
    src = 'import os\na = os.getenv("A")\nb = os.environ["B"]\nc = os.environ.get("C")\nd = os.getenv(key)\n'
    assert _literal_env_reads(ast.parse(src)) == ["os.getenv('A')", "os.environ['B']", "os.environ.get('C')"]


def test_no_literal_env_key_access_in_scripts() -> None:
    offenders: list[str] = []

    for path in _iter_py_files():
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        offenders.extend(f"{path.name}: {hit}" for hit in _literal_env_reads(tree))

    assert not offenders, "Literal env key access found:\n" + "\n".join(offenders)
