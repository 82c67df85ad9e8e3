"""
Import-boundary enforcement for the approval packages.

1. Engine purity   -- approval_engines/** may not import the ORM, kernel
                      db/models/services/selectors, config or services.
2. Engine clock    -- approval_engines/** never reads wall-clock time or
                      the environment.
3. Domain purity   -- approval_kernel/domain/** may not import the ORM.
4. Kernel direction -- approval_kernel/** may not import approval_engines,
                      approval_config or approval_services.

All scanning is done via AST -- these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _imports(path: Path) -> list[tuple[int, str]]:
    tree = ast.parse(path.read_text(), filename=str(path))
    found: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            found.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            found.append((node.lineno, node.module))
    return found


def _under(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    return [
        f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'"
        for path in _python_files(package)
        for lineno, module in _imports(path)
        if _under(module, forbidden)
    ]


class TestEnginePurity:

    FORBIDDEN = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "approval_kernel.db",
        "approval_kernel.models",
        "approval_kernel.services",
        "approval_kernel.selectors",
        "approval_config",
        "approval_services",
    )

    def test_no_forbidden_imports(self):
        violations = _violations("approval_engines", self.FORBIDDEN)
        assert not violations, "approval_engines must stay pure:\n" + "\n".join(violations)

    def test_no_clock_or_environment_reads(self):
        impure = {"datetime.now", "datetime.utcnow", "time.time", "os.environ", "os.getenv"}
        hits = []
        for path in _python_files("approval_engines"):
            for node in ast.walk(ast.parse(path.read_text())):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    if f"{node.value.id}.{node.attr}" in impure:
                        hits.append(f"  {path.relative_to(ROOT)}:{node.lineno} {node.value.id}.{node.attr}")
        assert not hits, "engines receive time as input:\n" + "\n".join(hits)


class TestKernelDirection:

    def test_domain_has_no_orm(self):
        violations = _violations("approval_kernel/domain", ("sqlalchemy",))
        assert not violations, "\n".join(violations)

    def test_kernel_does_not_import_outer_layers(self):
        violations = _violations(
            "approval_kernel", ("approval_engines", "approval_config", "approval_services"),
        )
        assert not violations, "\n".join(violations)
