"""Subledger: an escrowed recurring-billing ledger with token settlement."""

__version__ = "0.1.0"
