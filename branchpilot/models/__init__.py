"""Domain models shared by the workflow engine.

Key Models:
    - Task: Read-only task snapshot consumed by the engine
    - BuildResult: Outcome of a build/test validation run
    - RetryAttempt: One iteration of the retry-with-feedback loop
    - ExecutionStep: Audit record of a pipeline step
    - MergeResult: Outcome of a branch merge
    - WorkflowResult: Result of a single workflow execution
    - PipelineRun: Result of a sequential multi-task run

Example:
    >>> from branchpilot.models.domain import Task
    >>> task = Task(id="7", type="feature", title="Add export", metadata={"projectPath": "."})
"""
