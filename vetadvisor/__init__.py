"""VetAdvisor: certainty-factor livestock disease advisor."""
__version__ = "1.0.0"
