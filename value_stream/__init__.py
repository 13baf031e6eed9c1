"""
Value Stream Simulator

Tick-driven simulation of a software delivery value stream:
work items flow through stages, queue for capacity, wait for batch
windows and are routed back for rework.
"""

__version__ = "0.3.0"
