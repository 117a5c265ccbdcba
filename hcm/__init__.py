"""HCM — leave & attendance accounting core."""

__version__ = "1.0.0"
