"""Media catalog scanner: discovery, classification, metadata resolution and fingerprinting."""

__version__ = "0.3.0"
