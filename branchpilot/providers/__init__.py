"""Provider interfaces and adapters.

Key Components:
    - VCSProvider: Version control operations used by the orchestrator
    - AutomationChannel: Prompt delivery to an AI assistant
    - BuildValidator: Build/test validation gate
    - GitCLIProvider: VCSProvider backed by the git binary
    - ExternalAgentChannel: AutomationChannel backed by an agent CLI
"""
