"""
Entry point for the slicing service.

Running this script with ``python run.py`` starts the FastAPI server
defined in ``backend/slicenest/main.py``.  The ``backend`` directory is
added to the Python path first so the package can be imported from a
source checkout without installing it.

The bind address can be changed with the ``SLICENEST_HOST`` and
``SLICENEST_PORT`` environment variables.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import logging
import uvicorn

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)


def main() -> None:
    """Run the Uvicorn server hosting the slicing API."""
    backend_dir = Path(__file__).resolve().parent / "backend"
    if str(backend_dir) not in sys.path:
        sys.path.append(str(backend_dir))

    # Import inside main() to avoid modifying sys.path at module import time.
    from slicenest.main import app  # type: ignore

    host = os.getenv("SLICENEST_HOST", "0.0.0.0")
    port = int(os.getenv("SLICENEST_PORT", "8000"))
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
