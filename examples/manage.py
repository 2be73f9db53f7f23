#!/usr/bin/env python
"""Management entrypoint for the django-academy example project.

Run from the repository root, e.g.::

    python examples/manage.py migrate
    python examples/manage.py bootstrap_academy --config examples/academy.toml
"""

import os
import sys
from pathlib import Path

EXAMPLE_DIR = Path(__file__).resolve().parent


def main() -> None:
    """Run administrative tasks against the example settings."""
    sys.path.insert(0, str(EXAMPLE_DIR))
    sys.path.insert(1, str(EXAMPLE_DIR.parent / "src"))
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "settings")
    from django.core.management import execute_from_command_line

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
