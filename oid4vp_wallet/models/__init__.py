"""Wallet request models."""
