"""Ingestion lag resources."""
