import ast
from pathlib import Path


def test_no_shell_true_in_source_code():
    """
    Scans all .py files in the sake/ package to ensure nobody
    introduces `shell=True` into subprocess calls.
    """
    project_root = Path(__file__).parent.parent.parent
    src_dir = project_root / "sake"

    violations = []

    for py_file in src_dir.rglob("*.py"):
        tree = ast.parse(py_file.read_text(), filename=str(py_file))
        for node in ast.walk(tree):
            if isinstance(node, ast.Call):
                violations.extend(
                    f"{py_file.relative_to(project_root)}:{node.lineno}"
                    for kw in node.keywords
                    if kw.arg == "shell"
                    and isinstance(kw.value, ast.Constant)
                    and kw.value.value is True
                )

    assert not violations, f"Found restricted 'shell=True' invocations in: {violations}"


def test_task_files_are_never_evaluated():
    """The parser must not hand task-file text to eval/exec/compile."""
    project_root = Path(__file__).parent.parent.parent
    banned = {"eval", "exec", "compile"}
    offenders = []
    for py_file in (project_root / "sake").rglob("*.py"):
        tree = ast.parse(py_file.read_text(), filename=str(py_file))
        offenders.extend(
            f"{py_file.name}:{node.lineno}"
            for node in ast.walk(tree)
            if isinstance(node, ast.Call)
            and isinstance(node.func, ast.Name)
            and node.func.id in banned
        )
    assert not offenders, f"Found eval/exec/compile calls in: {offenders}"
