"""
Named kernel registry for the sparse-features pipeline.

A ``ComputeProgram`` maps kernel names to launchable callables. The encoder
resolves every stage kernel it needs by name once, at construction, and
never looks them up again.
"""

import importlib.util
from pathlib import Path
from typing import Callable, Dict, Optional


class ComputeProgram:
    """
    Load and expose compiled kernels by name.

    Kernels come from one of the built-in backends ("triton" or "torch") or
    from a Python module file defining a ``KERNELS`` mapping. Loading reports
    success as a boolean; a failed load leaves previously registered kernels
    untouched.
    """

    def __init__(self):
        self._kernels: Dict[str, Callable] = {}

    def load_sparse_features_kernels(self, backend: str = "triton") -> bool:
        if backend == "triton":
            from .kernels import KERNELS
        elif backend == "torch":
            from .kernels.reference import KERNELS
        else:
            print(f"Warning: unknown kernel backend {backend!r}.")
            return False
        return self._register(KERNELS, source=backend)

    def load_from_file(self, path) -> bool:
        """
        Import a kernel module from ``path`` and register its ``KERNELS``.

        Returns False if the file is missing, raises while importing, or does
        not define a ``KERNELS`` mapping of callables.
        """
        path = Path(path)
        if not path.is_file():
            print(f"Warning: could not open kernel file {path}!")
            return False

        spec = importlib.util.spec_from_file_location(f"sfc_kernels_{path.stem}", path)
        if spec is None or spec.loader is None:
            print(f"Warning: {path} is not an importable kernel module.")
            return False
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            print(f"Warning: error building kernels from {path}: {e}")
            return False

        kernels = getattr(module, "KERNELS", None)
        if not isinstance(kernels, dict):
            print(f"Warning: {path} does not define a KERNELS mapping.")
            return False
        return self._register(kernels, source=str(path))

    def _register(self, kernels: Dict[str, Callable], source: str) -> bool:
        bad = [name for name, fn in kernels.items() if not callable(fn)]
        if bad:
            print(f"Warning: non-callable kernels {bad} in {source}.")
            return False
        self._kernels.update(kernels)
        return True

    def load_kernel(self, name: str) -> Optional[Callable]:
        return self._kernels.get(name)

    def has_kernel(self, name: str) -> bool:
        return name in self._kernels

    @property
    def kernel_names(self):
        return tuple(sorted(self._kernels))
