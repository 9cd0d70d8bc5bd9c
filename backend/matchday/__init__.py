"""MatchDay: automated settlement of match outcomes against the bet ledger."""

__version__ = "0.1.0"
__author__ = "MatchDay Team"

__all__ = ["__version__", "__author__"]
