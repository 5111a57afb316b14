"""Allow ``python -m context_ledger`` (used by detached summary jobs)."""

from context_ledger.cli import app

if __name__ == "__main__":
    app()
