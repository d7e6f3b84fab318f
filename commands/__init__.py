"""Host lifecycle commands: register, start, stop, unregister and chain updates."""
