"""Prompt rendering for the AI automation channel.

Every prompt the engine sends (one per pipeline step, the build-error
feedback prompt and the sequential task prompt) is a Jinja2 template in
:data:`PROMPT_TEMPLATES`. Templates render in a sandboxed environment with
StrictUndefined, so a missing variable fails loudly instead of producing a
silently incomplete prompt.

Template variables:
    task: dict with id, type, title, description, file_path
    project_path: repository the task operates on
    build: BuildResult of the last failed validation (build_error)
    failures: failing test identifiers (analyze_failures)
    failure: one failing test identifier (apply_fix)
    analysis: response of the preceding analysis step, may be empty
    output: raw test output (analyze_failures), may be empty
"""

from typing import Any

from jinja2 import DictLoader, StrictUndefined, TemplateNotFound
from jinja2.exceptions import TemplateError as JinjaTemplateError
from jinja2.sandbox import SandboxedEnvironment

from branchpilot.exceptions import TemplateError
from branchpilot.models.domain import BuildResult, Task

_TASK_HEADER = """\
Task: {{ task.title }}
Type: {{ task.type }}
Task ID: {{ task.id }}
Project: {{ project_path }}
{% if task.file_path %}
File: {{ task.file_path }}
{% endif %}
{% if task.description %}

{{ task.description }}
{% endif %}
"""

PROMPT_TEMPLATES: dict[str, str] = {
    "_task_header": _TASK_HEADER,
    "refactor": """\
Refactor the following code.
{% include "_task_header" %}

Keep the external behaviour unchanged. Make sure the project still builds
and its tests pass when you are done.
""",
    "implement": """\
Implement the following feature.
{% include "_task_header" %}

Follow the conventions already used in the project.
""",
    "generate_tests": """\
Write tests for the feature you just implemented.
{% include "_task_header" %}

Cover the main behaviour and the edge cases.
""",
    "analyze_bug": """\
Analyze the following bug and identify its root cause. Do not change any
files yet.
{% include "_task_header" %}
""",
    "analyze_issue": """\
A production issue needs an urgent fix. Identify the root cause and the
smallest safe change that resolves it. Do not change any files yet.
{% include "_task_header" %}
""",
    "implement_fix": """\
Implement the fix.
{% include "_task_header" %}
{% if analysis %}

Analysis:
{{ analysis }}
{% endif %}

Keep the change minimal and add a regression test where possible.
""",
    "analyze": """\
Analyze the code described below.
{% include "_task_header" %}
""",
    "generate_report": """\
Summarize your findings as a report with concrete recommendations.
{% include "_task_header" %}
{% if analysis %}

Findings so far:
{{ analysis }}
{% endif %}
""",
    "analyze_failures": """\
The test suite of {{ project_path }} has {{ failures | length }} failing test(s):
{% for name in failures %}
- {{ name }}
{% endfor %}
{% if output %}

Test output:
{{ output }}
{% endif %}

Explain the likely cause of each failure.
""",
    "apply_fix": """\
Fix the failing test {{ failure }} in {{ project_path }}.
{% if analysis %}

Analysis:
{{ analysis }}
{% endif %}

Change only what is needed for this test to pass.
""",
    "generate_docs": """\
Write or update documentation.
{% include "_task_header" %}
""",
    "analyze_performance": """\
Profile the code described below and identify performance bottlenecks. Do
not change any files yet.
{% include "_task_header" %}
""",
    "implement_optimizations": """\
Implement the optimizations you identified.
{% include "_task_header" %}
{% if analysis %}

Analysis:
{{ analysis }}
{% endif %}

Keep the external behaviour unchanged.
""",
    "review": """\
Review the code described below for correctness, readability and security.
{% include "_task_header" %}
""",
    "execute": """\
Complete the following task.
{% include "_task_header" %}
""",
    "build_error": """\
The build failed after your last change.
{% if build.command %}

Command: {{ build.command }}
{% endif %}

Error:
{{ build.error or "unknown error" }}
{% if build.failures %}

Failing tests:
{% for name in build.failures %}
- {{ name }}
{% endfor %}
{% endif %}

Fix the errors and make sure the build passes.
""",
    "sequential_task": """\
{% include "_task_header" %}

When you are finished, reply with "done".
""",
}


class PromptRenderer:
    """Render prompts from the template table.

    Attributes:
        env: Sandboxed Jinja2 environment over the template table.

    Example:
        >>> renderer = PromptRenderer()
        >>> prompt = renderer.render("execute", task=task.snapshot(), project_path="/work/app")
    """

    def __init__(self, templates: dict[str, str] | None = None) -> None:
        """Initialize the renderer.

        Args:
            templates: Replacement or additional templates, merged over the
                built-in table.
        """
        table = dict(PROMPT_TEMPLATES)
        if templates:
            table.update(templates)

        self.env = SandboxedEnvironment(
            loader=DictLoader(table),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, name: str, **context: Any) -> str:
        """Render template ``name`` with ``context``.

        Raises:
            TemplateError: If the template is unknown or fails to render
        """
        try:
            template = self.env.get_template(name)
        except TemplateNotFound as e:
            raise TemplateError(f"Unknown prompt template: {name}") from e

        try:
            return template.render(**context).strip() + "\n"
        except JinjaTemplateError as e:
            raise TemplateError(f"Failed to render prompt {name!r}: {e}") from e

    def task_prompt(self, name: str, task: Task, project_path: str | None = None, **extra: Any) -> str:
        """Render a step prompt for ``task``."""
        context = {
            "task": _task_context(task),
            "project_path": project_path or task.project_path or "",
            "analysis": "",
            "output": "",
        }
        context.update(extra)
        return self.render(name, **context)

    def build_error_prompt(self, build: BuildResult) -> str:
        """Feedback prompt for a failed validation."""
        return self.render("build_error", build=build)


def _task_context(task: Task) -> dict[str, Any]:
    return {
        "id": task.id,
        "type": task.type_value,
        "title": task.title,
        "description": task.description,
        "file_path": task.file_path,
    }
