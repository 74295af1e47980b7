"""dailybrief: scheduled delivery of personal daily briefings."""

__version__ = "0.1.0"
