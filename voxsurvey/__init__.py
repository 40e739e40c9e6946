"""voxsurvey -- spoken survey answering in English and Khmer."""

__version__ = "0.1.0"
