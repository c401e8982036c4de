"""SDR Watch: intraday swap data repository slice synchronization."""
