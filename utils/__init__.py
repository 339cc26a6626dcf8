"""Library App - helper utilities (input validation, CLI output formatting)."""
