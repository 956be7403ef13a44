"""
Core modules for Tutor Analytics.

This package contains scope resolution, fan-out event queries, pricing,
aggregation, FAQ clustering, enrichment and report orchestration.
"""
