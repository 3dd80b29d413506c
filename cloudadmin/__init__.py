"""cloudadmin — administrative PowerShell sessions against a Microsoft 365 tenant."""

__version__ = "0.1.0"
