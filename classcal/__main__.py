"""
Package entry point.

Allows running the application via:

    python -m classcal

This simply forwards execution to classcal.cli.main().
"""

from classcal.cli import main

if __name__ == "__main__":
    main()
