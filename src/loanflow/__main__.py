"""Allow ``python -m loanflow``."""

from loanflow.cli.app import app

if __name__ == "__main__":
    app()
