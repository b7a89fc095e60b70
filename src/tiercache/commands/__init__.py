"""Built-in operator commands for the ``tiercache`` CLI."""
