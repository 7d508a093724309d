"""resumeflow - asynchronous résumé parsing and job-matching pipeline."""

__version__ = "0.4.0"
