"""CLI entry point for mockforge.cli module.

Enables execution via: python -m mockforge.cli (runs the pipeline scheduler)
"""

from mockforge.cli.run_worker import main

if __name__ == "__main__":
    main()
