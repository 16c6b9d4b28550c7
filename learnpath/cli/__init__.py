"""Console entry points: ``assessment``, ``quality-check``, and ``progress-tracker``."""
