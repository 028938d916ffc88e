"""Controller: reconciliation driver for hibernation plans."""
