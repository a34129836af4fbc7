"""tutorcart: slot reservation and pricing engine for the tutoring marketplace."""

__version__ = "0.1.0"
