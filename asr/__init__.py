"""
Agent Service Registry.

Registry for composite agent services: bounded agent roles, bonded operator
instances, threshold multisig handoff, slashing and penalty draining.
"""

__version__ = "1.0.0"
