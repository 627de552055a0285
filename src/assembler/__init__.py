"""Resource-graph assembler for infrastructure stacks.

Declares resources into per-stack dependency graphs, validates them at
synthesis time and hands a provisioning order plus declared outputs to an
orchestrator for create/destroy/plan.
"""
