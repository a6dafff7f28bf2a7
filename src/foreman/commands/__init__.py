"""Command handlers invoked by the ``foreman`` CLI."""
