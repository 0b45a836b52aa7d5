"""
rack_orchestrator

This package is a task orchestration engine for rack scale hardware operations.

We keep modules small and well separated:
core contains shared data structures, errors and the audit log
operation contains operation types and request validation
inventory contains the inventory store and its loaders
task contains the task model, target resolution, the task store and the task manager
componentmanager contains hardware action providers per component type
execution contains the executor, activities and workflow definitions
"""
