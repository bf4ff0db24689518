"""Punto de entrada: ``python -m ns_libre_sync``."""

from __future__ import annotations

from ns_libre_sync.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
