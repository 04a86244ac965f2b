"""Smoke test to verify testing infrastructure is working."""


def test_smoke():
    """Package imports and exposes a version."""
    import audiodedup

    assert audiodedup.__version__


def test_python_version():
    """Verify Python version meets requirements."""
    import sys

    assert sys.version_info >= (3, 11), "Python 3.11 or higher required"
