"""loanflow command-line interface (Typer)."""
