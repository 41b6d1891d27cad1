"""deploystore test suite."""
