"""
mpbench Command Line Interface.

Entry points for running, validating and inspecting benchmark topologies.
"""

from .main import cli, main

__all__ = ["cli", "main"]
