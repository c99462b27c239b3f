"""Shared HTTP plumbing: dependencies and response envelopes."""
