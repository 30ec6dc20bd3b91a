"""
Fix appliers.

A fix applier receives an analysis, reads or edits the affected source files
and reports whether the tree still validates. The recording applier only
reads files and runs validation, leaving the edit to a person or external
coding agent driven by the generated prompt. The LLM applier asks an OpenAI
model for full-file replacements and writes them.
"""

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Union

import openai
from jinja2 import Template

from fixloop.config.settings import Settings, get_settings
from fixloop.core.interfaces import FixApplier
from fixloop.core.types import Analysis, FileModification, Fix
from fixloop.error_handling.exceptions import FixApplicationError
from fixloop.models.openai_client import OpenAIClient
from fixloop.monitoring.logger import get_logger

logger = get_logger(__name__)

LANGUAGE_BY_SUFFIX = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".py": "python",
    ".css": "css",
}

CODING_PROMPT_TEMPLATE = """\
You are a Coding Agent fixing a test failure.

## Test Failure Details

**Scenario:** {{ analysis.scenario }}
**Failed Step:** {{ analysis.failed_step }} (id: {{ analysis.failed_step_id }})
**Category:** {{ analysis.category.value }}
**Root Cause:** {{ analysis.root_cause }}
**Confidence:** {{ analysis.confidence.value }}

## Suggested Fix

{{ analysis.suggested_fix }}

## Affected Files
{% for file in files %}
### {{ file.path }}
```{{ file.language }}
{{ file.content }}
```
{% else %}
No affected files could be read.
{% endfor %}
## Instructions

1. Analyze the root cause and affected files
2. Apply a minimal, targeted fix that addresses the issue
3. Do NOT change unrelated code
4. Do NOT add unnecessary comments or refactoring
5. Preserve type safety
{% if validation_command %}6. After making changes, run `{{ validation_command }}` to validate
{% endif %}
Focus on fixing this specific issue: **{{ analysis.root_cause }}**
"""

LLM_SYSTEM_PROMPT = (
    "You fix bugs in web application source code so that a failing end-to-end "
    "test passes. Respond with a JSON object of the form "
    '{"files": [{"path": "<relative path>", "content": "<full new file content>", '
    '"description": "<one line summary>"}]}. Only include files you changed, only '
    "use paths from the Affected Files section, and always return complete file contents."
)


def read_affected_files(
    analysis: Analysis, project_root: Path, max_files: int
) -> Dict[str, str]:
    """Read up to ``max_files`` affected files that exist under the project root."""
    contents: Dict[str, str] = {}
    for relative_path in analysis.affected_files:
        if len(contents) >= max_files:
            break
        path = project_root / relative_path
        if not path.is_file():
            logger.info("Affected file not found", extra={"path": str(path)})
            continue
        contents[relative_path] = path.read_text(encoding="utf-8")
    return contents


def generate_coding_prompt(
    analysis: Analysis,
    project_root: Union[str, Path],
    max_files: int = 5,
    validation_command: Optional[str] = None,
    file_contents: Optional[Dict[str, str]] = None,
) -> str:
    """
    Build the prompt handed to a coding agent for an analysis.

    Args:
        analysis: Failure analysis
        project_root: Application source root
        max_files: Maximum affected files to embed
        validation_command: Command the agent should run after editing
        file_contents: Already-read file contents, read from disk when omitted

    Returns:
        Prompt text
    """
    if file_contents is None:
        file_contents = read_affected_files(analysis, Path(project_root), max_files)
    files = [
        {
            "path": path,
            "language": LANGUAGE_BY_SUFFIX.get(Path(path).suffix, ""),
            "content": content,
        }
        for path, content in file_contents.items()
    ]
    return Template(CODING_PROMPT_TEMPLATE).render(
        analysis=analysis, files=files, validation_command=validation_command
    )


async def run_validation(command: str, cwd: Path, timeout_seconds: float) -> bool:
    """Run the source validation command; True when it exits cleanly."""
    logger.info("Validating source", extra={"command": command})
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    try:
        output, _ = await asyncio.wait_for(process.communicate(), timeout_seconds)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"Validation timed out after {timeout_seconds}s", extra={"command": command})
        return False

    if process.returncode != 0:
        logger.warning(
            "Validation failed",
            extra={"command": command, "output": output.decode(errors="replace")[-2000:]},
        )
        return False
    return True


class RecordingFixApplier(FixApplier):
    """Reads the affected files, records them unchanged and validates the tree."""

    name = "record"

    def __init__(
        self,
        project_root: Optional[Union[str, Path]] = None,
        max_files_per_fix: Optional[int] = None,
        validate: Optional[bool] = None,
        validation_command: Optional[str] = None,
        validation_timeout_seconds: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.project_root = Path(project_root or settings.project_root)
        self.max_files_per_fix = max_files_per_fix or settings.max_files_per_fix
        self.validate = settings.validate_fixes if validate is None else validate
        self.validation_command = validation_command or settings.fix_validation_command
        self.validation_timeout_seconds = (
            validation_timeout_seconds or settings.fix_validation_timeout_seconds
        )

    async def apply(self, analysis: Analysis) -> Fix:
        logger.info(
            f"Processing fix for: {analysis.scenario}",
            extra={"step_id": analysis.failed_step_id, "category": analysis.category.value},
        )
        contents = read_affected_files(analysis, self.project_root, self.max_files_per_fix)
        modifications = [
            FileModification(
                file_path=path,
                original_content=content,
                modified_content=content,
                change_description=f"Analyzed for {analysis.category.value} fix: {analysis.root_cause}",
            )
            for path, content in contents.items()
        ]
        return Fix(
            analysis=analysis,
            files_modified=modifications,
            compile_valid=await self.validate_tree(),
        )

    async def validate_tree(self) -> bool:
        if not self.validate:
            return True
        return await run_validation(
            self.validation_command, self.project_root, self.validation_timeout_seconds
        )


class LLMFixApplier(RecordingFixApplier):
    """Asks an OpenAI model for file replacements and writes them."""

    name = "llm"

    def __init__(
        self,
        client: Optional[OpenAIClient] = None,
        temperature: Optional[float] = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._client = client
        self.temperature = (
            get_settings().openai_temperature if temperature is None else temperature
        )

    @property
    def client(self) -> OpenAIClient:
        if self._client is None:
            self._client = OpenAIClient()
        return self._client

    async def apply(self, analysis: Analysis) -> Fix:
        contents = read_affected_files(analysis, self.project_root, self.max_files_per_fix)
        if not contents:
            logger.warning(
                "No affected files could be read, nothing to fix",
                extra={"scenario_file": analysis.scenario_file},
            )
            return Fix(analysis=analysis, compile_valid=await self.validate_tree())

        prompt = generate_coding_prompt(
            analysis,
            self.project_root,
            validation_command=self.validation_command if self.validate else None,
            file_contents=contents,
        )
        try:
            response = await self.client.create_json_output(
                prompt, LLM_SYSTEM_PROMPT, temperature=self.temperature
            )
        except openai.APIError as e:
            raise FixApplicationError(
                f"Model request failed: {e}",
                applier=self.name,
                files=list(contents),
                cause=e,
            )

        modifications = self._write_changes(response.get("files") or [], contents)
        logger.info(
            f"Applied {len(modifications)} file changes",
            extra={"scenario_file": analysis.scenario_file},
        )
        return Fix(
            analysis=analysis,
            files_modified=modifications,
            compile_valid=await self.validate_tree(),
        )

    def _write_changes(
        self, changes: List[Dict[str, str]], originals: Dict[str, str]
    ) -> List[FileModification]:
        modifications: List[FileModification] = []
        for change in changes:
            path = str(change.get("path", ""))
            new_content = change.get("content")
            if path not in originals or not isinstance(new_content, str):
                logger.warning("Ignoring change to unexpected file", extra={"path": path})
                continue
            if new_content == originals[path]:
                continue
            (self.project_root / path).write_text(new_content, encoding="utf-8")
            modifications.append(
                FileModification(
                    file_path=path,
                    original_content=originals[path],
                    modified_content=new_content,
                    change_description=str(change.get("description", "")),
                )
            )
        return modifications


def create_fix_applier(settings: Optional[Settings] = None, kind: Optional[str] = None) -> FixApplier:
    """Select a fix applier by configuration."""
    settings = settings or get_settings()
    kind = (kind or settings.fix_applier).lower()
    common = dict(
        project_root=settings.project_root,
        max_files_per_fix=settings.max_files_per_fix,
        validate=settings.validate_fixes,
        validation_command=settings.fix_validation_command,
        validation_timeout_seconds=settings.fix_validation_timeout_seconds,
    )
    if kind == RecordingFixApplier.name:
        return RecordingFixApplier(**common)
    if kind == LLMFixApplier.name:
        return LLMFixApplier(temperature=settings.openai_temperature, **common)
    raise ValueError(f"Unknown fix applier: {kind}")
