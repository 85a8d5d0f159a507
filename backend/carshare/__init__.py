"""Carshare backend: booking lifecycle, payments and the balance ledger."""
