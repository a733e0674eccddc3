"""Grocery storefront service."""
