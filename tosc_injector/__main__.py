"""CLI entry point -- python -m tosc_injector."""
from tosc_injector.cli import main

if __name__ == "__main__":
    main()
