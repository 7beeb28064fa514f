"""Entry point for running mailaudit as a module.

Usage:
    python -m mailaudit validate-config
    python -m mailaudit --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from mailaudit.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
