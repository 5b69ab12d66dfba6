"""Runtime assembly and host-application wiring."""
