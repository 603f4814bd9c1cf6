"""EntryPoint systems: bundle dispatch and sender throttling."""
