"""
Prompt Template System

Provides templating and versioning for prompts.

Design decisions:
- Templates use Jinja2 for flexibility
- Immutable templates (create new versions, don't modify)
- Registry pattern for centralized access
- The templated fallback answers live here too, so every user-facing
  text of the answer path is defined in one place
"""

import hashlib
from datetime import datetime
from typing import Any

from jinja2 import BaseLoader, Environment, TemplateSyntaxError, UndefinedError
from pydantic import BaseModel, ConfigDict, Field

from lectern.core.types import utcnow

_env = Environment(loader=BaseLoader(), autoescape=False)


class PromptTemplate(BaseModel):
    """
    A versioned prompt template.

    Templates are immutable after creation. To update a prompt,
    create a new version.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    template: str
    version: str
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    # Expected variables (for validation)
    required_variables: frozenset[str] = Field(default_factory=frozenset)

    @property
    def content_hash(self) -> str:
        content = f"{self.name}:{self.version}:{self.template}"
        return hashlib.sha256(content.encode()).hexdigest()[:12]

    def render(self, **variables: Any) -> str:
        """
        Render the template with provided variables.

        Raises:
            ValueError: If required variables are missing
        """
        missing = self.required_variables - set(variables.keys())
        if missing:
            raise ValueError(f"Missing required variables: {sorted(missing)}")

        try:
            return _env.from_string(self.template).render(**variables)
        except UndefinedError as e:
            raise ValueError(f"Undefined variable in template: {e}")

    def validate_template(self) -> list[str]:
        """Return syntax errors (empty if valid)."""
        try:
            _env.parse(self.template)
        except TemplateSyntaxError as e:
            return [f"Syntax error: {e}"]
        return []


class PromptRegistry:
    """
    Central registry for prompt templates.

    Provides:
    - Template storage and retrieval
    - Version management
    - Default prompts for answer synthesis
    """

    def __init__(self):
        self._templates: dict[str, dict[str, PromptTemplate]] = {}
        self._default_versions: dict[str, str] = {}

        self._register_defaults()

    def _register_defaults(self) -> None:
        self.register(PromptTemplate(
            name="rag_system",
            version="1.0.0",
            template="""{{ persona }}

Current date and time: {{ now }} ({{ timezone }}).
{% if history %}
Recent conversation with this learner (oldest first):
{{ history }}
{% endif %}
{% if document_count %}You have {{ document_count }} relevant item{{ "s" if document_count != 1 else "" }} from the learner's own knowledge base. Base your answer on them{% if mode == "keyword" %}; they were found by keyword match, so first check that they really relate to the question{% endif %}.
{% else %}Nothing in the learner's knowledge base matched this question. Answer from general knowledge, mention briefly that their notes do not cover it yet, and suggest what they could add.
{% endif %}
Guidelines:
- Understand the retrieved material and explain it in your own words. Never copy it verbatim.
- Be concise, accurate and encouraging.
- If you are unsure, say so.""",
            description="System prompt for answer synthesis",
            required_variables=frozenset({"persona", "now", "timezone", "document_count"}),
        ))

        self.register(PromptTemplate(
            name="rag_user",
            version="1.0.0",
            template="""{% if context %}Material from the knowledge base:

{{ context }}
{% endif %}Question: {{ question }}""",
            description="User turn carrying retrieved context and the question",
            required_variables=frozenset({"question"}),
        ))

        self.register(PromptTemplate(
            name="fallback_with_context",
            version="1.0.0",
            template="""I couldn't put together a full explanation right now, but this is the most relevant part of your notes.

Based on "{{ title }}": {{ excerpt }}""",
            description="Deterministic answer when the LLM fails and evidence exists",
            required_variables=frozenset({"title", "excerpt"}),
        ))

        self.register(PromptTemplate(
            name="fallback_no_context",
            version="1.0.0",
            template=(
                "I couldn't generate an answer right now, and I didn't find anything "
                "about this in your knowledge base yet. Keep going: try rephrasing the "
                "question, or add notes or a quiz on this topic so I can help you with "
                "it next time."
            ),
            description="Deterministic answer when the LLM fails without evidence",
        ))

    def register(self, template: PromptTemplate) -> None:
        errors = template.validate_template()
        if errors:
            raise ValueError(f"Invalid template: {errors}")

        self._templates.setdefault(template.name, {})[template.version] = template

    def get(
        self,
        name: str,
        version: str | None = None,
    ) -> PromptTemplate | None:
        """
        Get a template by name and optional version.

        Without a version, the default version is used, else the latest.
        """
        if name not in self._templates:
            return None

        if version is None:
            version = self._default_versions.get(name)
            if version is None:
                versions = sorted(self._templates[name].keys())
                version = versions[-1] if versions else None

        if version is None:
            return None

        return self._templates[name].get(version)

    def require(self, name: str) -> PromptTemplate:
        template = self.get(name)
        if template is None:
            raise KeyError(f"Prompt template not registered: {name}")
        return template

    def set_default_version(self, name: str, version: str) -> None:
        if name not in self._templates:
            raise ValueError(f"Template not found: {name}")
        if version not in self._templates[name]:
            raise ValueError(f"Version not found: {name}:{version}")

        self._default_versions[name] = version

    def list_templates(self) -> list[str]:
        return list(self._templates.keys())


# Global registry instance
_registry: PromptRegistry | None = None


def get_prompt_registry() -> PromptRegistry:
    """Get or create the global prompt registry."""
    global _registry
    if _registry is None:
        _registry = PromptRegistry()
    return _registry
