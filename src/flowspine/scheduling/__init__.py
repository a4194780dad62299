"""Scheduler sweeps, the sweep lease, and the periodic thread driver."""
