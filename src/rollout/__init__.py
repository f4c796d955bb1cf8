"""
rollout-spine - ordered, idempotent multi-service rollouts.

- rollout.core: errors, logging, secrets
- rollout.deploy: descriptors, routing policy, sequencer, operations
- rollout.cli: the ``rollout`` command
"""

__version__ = "0.1.0"
