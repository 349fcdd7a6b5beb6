"""
hepf_core/__main__.py
=====================

``python -m hepf_core <command> [options]`` - see :mod:`hepf_core.cli`.
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
