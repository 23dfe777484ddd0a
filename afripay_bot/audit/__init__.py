"""Bot log, event bus and outgoing-message audit."""
