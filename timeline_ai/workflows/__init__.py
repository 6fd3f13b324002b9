"""Workflow type catalog: which steps each content-production workflow runs."""
