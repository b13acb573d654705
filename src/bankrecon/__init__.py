"""
bankrecon - Bank statement import and reconciliation engine.

Parses OFX, CSV and spreadsheet bank exports, classifies each transaction
against the user's own accounts, flags duplicates of earlier imports and
commits the result atomically through a preview/confirm workflow.
"""

__version__ = "0.1.0"
