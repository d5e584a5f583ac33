"""Conformance test scenarios for the idempotency coordinator.

This package contains end-to-end scenario tests that drive the demo wallet
API (or a small purpose-built app) over HTTP. Each scenario covers one
aspect of idempotency handling.
"""
