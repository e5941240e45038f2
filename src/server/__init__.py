"""FastAPI server exposing the HMRC MTD client."""

__version__ = "1.0.0"
