"""tagrecon: reconcile two tag/instrument lists and commit reviewed corrections."""

__version__ = "0.3.0"
