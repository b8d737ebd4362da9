"""pit-client: command-line client for the pit compute-job platform."""

__version__ = "0.3.0"
