"""Volvo model advisor: questionnaire scoring and quota-limited follow-up chat."""

__version__ = "1.0.0"
