"""Templates for in-app notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from cadence.notifications.contracts import NotificationKind


@dataclass(frozen=True)
class InAppTemplate:
  """Define an in-app notification template."""

  template_id: str
  kind: NotificationKind
  title_template: str
  body_template: str
  required_keys: set[str]


TEMPLATES: dict[str, InAppTemplate] = {
  "job_succeeded_v1": InAppTemplate(template_id="job_succeeded_v1", kind="success", title_template="Music ready", body_template='"{{title}}" is ready to play.', required_keys={"job_id", "title"}),
  "job_failed_v1": InAppTemplate(template_id="job_failed_v1", kind="error", title_template="Generation failed", body_template='"{{title}}" could not be generated: {{reason}}', required_keys={"job_id", "title", "reason"}),
}


def render_in_app_template(*, template_id: str, data: dict[str, Any]) -> tuple[NotificationKind, str, str]:
  """Render a template into its kind, title and body."""
  template = TEMPLATES.get(template_id)
  if template is None:
    raise ValueError(f"Unknown in-app template: {template_id}")
  missing = sorted(template.required_keys - set(data.keys()))
  if missing:
    raise ValueError(f"Missing placeholders for template '{template_id}': {', '.join(missing)}")
  title = template.title_template
  body = template.body_template
  for key, value in data.items():
    title = title.replace(f"{{{{{key}}}}}", str(value))
    body = body.replace(f"{{{{{key}}}}}", str(value))
  return template.kind, title, body
