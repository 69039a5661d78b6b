"""CLI sub-applications for Agencyflow."""
