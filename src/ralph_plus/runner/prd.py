"""PRD document: the external task source read once per run and updated per task."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ralph_plus.runner.backend import AgentBackend, BackendRunError
from ralph_plus.runner.contracts import load_json, write_json
from ralph_plus.runner.errors import SetupError
from ralph_plus.runner.models import Task

logger = logging.getLogger(__name__)

DEFAULT_PROJECT = "ralph"
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(slots=True)
class PrdDocument:
    """In-memory PRD plus its file path; writes go straight back to disk."""

    path: Path
    raw: dict[str, Any]

    @classmethod
    def load(cls, path: Path) -> PrdDocument:
        if not path.exists():
            raise SetupError(f"PRD file not found: {path}")
        try:
            raw = load_json(path)
        except (OSError, json.JSONDecodeError, TypeError) as error:
            raise SetupError(f"PRD file is not a valid JSON object: {path} ({error})") from error
        document = cls(path=path, raw=raw)
        document.tasks()
        return document

    @property
    def project(self) -> str:
        value = self.raw.get("project")
        if not isinstance(value, str) or not value.strip():
            return DEFAULT_PROJECT
        return value.strip()

    @property
    def state_name(self) -> str:
        """Project name safe for use inside a file name."""

        return _UNSAFE_NAME_CHARS.sub("-", self.project).strip("-") or DEFAULT_PROJECT

    @property
    def branch(self) -> str:
        value = self.raw.get("branchName")
        return value.strip() if isinstance(value, str) else ""

    @property
    def description(self) -> str:
        value = self.raw.get("description")
        return value if isinstance(value, str) else ""

    @property
    def config(self) -> dict[str, Any]:
        value = self.raw.get("config")
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise SetupError(f"PRD config must be an object: {self.path}")
        return value

    def tasks(self) -> list[Task]:
        """User stories in document order."""

        stories = self.raw.get("userStories")
        if not isinstance(stories, list):
            raise SetupError(f"PRD has no userStories array: {self.path}")
        tasks: list[Task] = []
        seen: set[str] = set()
        for index, story in enumerate(stories):
            task = _parse_story(story, index=index, path=self.path)
            if task.task_id in seen:
                raise SetupError(f"Duplicate user story id {task.task_id!r} in {self.path}")
            seen.add(task.task_id)
            tasks.append(task)
        return tasks

    def report(self, task_id: str, passed: bool, note: str) -> None:
        """Write back ``passes`` and, when non-empty, ``notes`` of one story."""

        for story in self.raw.get("userStories", []):
            if isinstance(story, dict) and str(story.get("id")) == task_id:
                story["passes"] = passed
                if note:
                    story["notes"] = note
                break
        else:
            logger.warning("Story %s not found in %s; nothing reported", task_id, self.path)
            return
        write_json(self.path, self.raw)


def _parse_story(story: object, *, index: int, path: Path) -> Task:
    if not isinstance(story, dict):
        raise SetupError(f"userStories[{index}] must be an object in {path}")
    story_id = story.get("id")
    if story_id is None or not str(story_id).strip():
        raise SetupError(f"userStories[{index}] has no id in {path}")
    criteria = story.get("acceptanceCriteria") or []
    if isinstance(criteria, str):
        criteria = [criteria]
    if not isinstance(criteria, list):
        raise SetupError(f"userStories[{index}].acceptanceCriteria must be an array in {path}")
    priority = story.get("priority", 0)
    if isinstance(priority, bool) or not isinstance(priority, int | float):
        raise SetupError(f"userStories[{index}].priority must be a number in {path}")
    return Task(
        task_id=str(story_id).strip(),
        title=str(story.get("title") or ""),
        description=str(story.get("description") or ""),
        acceptance_criteria=tuple(str(item) for item in criteria),
        priority=int(priority),
        passes=story.get("passes") is True,
        notes=str(story.get("notes") or ""),
    )


def converted_path(markdown_path: Path) -> Path:
    return markdown_path.with_name(f"{markdown_path.stem}.prd.json")


def prepare_prd(path: Path, *, backend: AgentBackend | None, prompt_path: Path) -> Path:
    """Return a JSON PRD path, converting a markdown PRD through ``backend`` if needed."""

    if path.suffix.lower() != ".md":
        return path
    if not path.exists():
        raise SetupError(f"PRD file not found: {path}")

    target = converted_path(path)
    if target.exists() and target.stat().st_mtime > path.stat().st_mtime:
        logger.info("Using cached conversion: %s", target)
        return target

    if backend is None:
        raise SetupError("Markdown PRD conversion needs an agent backend.")
    prompt_path = prompt_path.expanduser()
    if not prompt_path.exists():
        raise SetupError(f"Conversion prompt not found: {prompt_path}")

    logger.info("Converting markdown PRD %s via %s", path, backend.display_name)
    prompt = build_conversion_prompt(
        instructions=prompt_path.read_text("utf-8"),
        markdown=path.read_text("utf-8"),
    )
    try:
        output = backend.convert_once(prompt)
    except BackendRunError as error:
        raise SetupError(f"Markdown-to-JSON conversion failed: {error}") from error

    payload = extract_prd_json(output)
    if payload is None:
        failed_path = target.with_name(f"{target.name}.failed")
        failed_path.write_text(output, "utf-8")
        raise SetupError(
            "Conversion produced invalid JSON (missing userStories). "
            f"Raw output saved to: {failed_path}",
        )
    write_json(target, payload)
    logger.info("Converted to %s", target)
    return target


def build_conversion_prompt(*, instructions: str, markdown: str) -> str:
    return (
        f"{instructions}\n"
        "\n"
        "---\n"
        "\n"
        f"{markdown}\n"
        "\n"
        "---\n"
        "\n"
        "IMPORTANT: Output ONLY the raw prd.json content. "
        "No markdown fences, no explanation, just valid JSON."
    )


def extract_prd_json(output: str) -> dict[str, Any] | None:
    """JSON object from the first line opening ``{`` to the last line closing ``}``.

    Returns ``None`` unless the object carries a non-empty ``userStories`` list.
    """

    lines = output.splitlines()
    start = next((i for i, line in enumerate(lines) if line.lstrip().startswith("{")), None)
    end = next(
        (i for i in range(len(lines) - 1, -1, -1) if lines[i].rstrip().endswith("}")),
        None,
    )
    if start is None or end is None or end < start:
        return None
    try:
        payload = json.loads("\n".join(lines[start : end + 1]))
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    stories = payload.get("userStories")
    if not isinstance(stories, list) or not stories:
        return None
    return payload
