"""Allocation, compilation and orchestration of a conversion run."""
