"""Learning analytics and progress tracking for the learnpath CLI tools."""

__version__ = "0.1.0"
