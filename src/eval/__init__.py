# src/eval/__init__.py
"""
Evaluation package for the archivist pipeline.

Follows the EVAL = PROD principle: the lore regression benchmark runs every
case through the production ``EvidenceGate``, never a reimplementation.

Usage:
    python -m src.main bench tests/fixtures/lore_regression/cases.json
"""
__all__ = ["run_benchmark", "run_benchmark_file"]


def __getattr__(name: str):
    if name in __all__:
        from . import lore_benchmark
        return getattr(lore_benchmark, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
