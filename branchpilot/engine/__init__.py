"""Workflow engine: strategy resolution, step dispatch, orchestration and sequential pipelines."""
