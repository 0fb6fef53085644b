"""Configuration system for the workflow engine.

Key Components:
    - BranchPilotSettings: Main configuration container with YAML loading support
    - GitConfig: Default, integration and remote branch settings
    - RetryConfig: Retry-with-feedback budget
    - ValidationConfig: Build/test candidate commands
    - AutomationConfig: Agent command and completion polling timing
    - PipelineConfig: Sequential run policy and fix concurrency

Example:
    >>> from branchpilot.config.settings import BranchPilotSettings
    >>> settings = BranchPilotSettings.from_yaml("branchpilot.yaml")
    >>> settings.retry.max_attempts
    3
"""
