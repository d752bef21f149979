"""Coordination layer: launch orchestration, fleet control, leases,
peer health monitoring and name registration."""
