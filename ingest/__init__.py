"""Participation ingest: CSV participant records synchronized into a Strapi backend."""
