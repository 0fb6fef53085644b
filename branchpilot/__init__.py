"""branchpilot: git-branch-strategy workflow orchestration for AI-assisted edits.

Resolves a branching strategy per task type, drives an AI edit loop on an
isolated branch, validates the result against a build/test gate and merges
or rolls back.

Example:
    >>> from branchpilot.engine.orchestrator import WorkflowOrchestrator
    >>> orchestrator = WorkflowOrchestrator(vcs, channel, validator, settings)
    >>> result = await orchestrator.execute_workflow(task)
"""

__version__ = "0.3.0"
