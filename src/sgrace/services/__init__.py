"""Service layer — detection, evidence capture, workload orchestration.

Services may import from domain, config and infrastructure layers.
They must never import from commands or output.
"""
