"""CLI entry point for hibiscus.cli module.

Enables execution via: python -m hibiscus.cli
"""

from hibiscus.cli.generate import main

if __name__ == "__main__":
    main()
