# Complexity guard for the renderer and the collectors.
# Uses radon when available; if radon is not installed the test is skipped.
import pathlib
import pytest

try:
    from radon.complexity import cc_visit
except Exception:
    pytest.skip("radon not installed - complexity test skipped", allow_module_level=True)

# cyclomatic complexity ceiling per function
THRESHOLD = 12

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]


@pytest.mark.parametrize('relative', ['report/renderer.py', 'ingest/collectors.py'])
def test_complexity_threshold(relative):
    path = REPO_ROOT / relative
    assert path.exists(), f"{relative} not found at {path}"

    blocks = cc_visit(path.read_text(encoding='utf-8'))
    offenders = [(b.name, b.complexity, b.lineno) for b in blocks if b.complexity > THRESHOLD]
    if offenders:
        offenders_str = '\n'.join(f"{name} (complexity={comp}) at line {lineno}" for name, comp, lineno in offenders)
        pytest.fail(f"Complexity threshold exceeded in {relative} (threshold={THRESHOLD}):\n{offenders_str}")
