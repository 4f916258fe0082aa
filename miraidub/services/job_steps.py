"""
job_steps.py — Processing Step Projection & Progress Hints
============================================================

Two small pieces of logic about the fixed step sequence
upload → analyze → translate → voice → sync → finalize:

  1. ``project_steps`` — the per-step display state derived from a Job.
     Pure; recomputed on every read.
  2. ``estimate_progress_from_logs`` — an advisory guess at where the
     external prediction is, based on its log text.  It never decides a
     terminal state; callers only use it to move a job forward.
"""

from dataclasses import dataclass
from typing import List, Optional

from miraidub.config import PROCESSING_STEPS, SECONDS_PER_STEP_ESTIMATE
from miraidub.models import JobStatus, ProcessingStep

STEP_INFO = {
    "upload": {
        "title": "Uploading Video",
        "description": "Securely uploading your video to our servers",
    },
    "analyze": {
        "title": "Analyzing Audio",
        "description": "Extracting and analyzing speech patterns",
    },
    "translate": {
        "title": "Translating Content",
        "description": "AI-powered translation to target language",
    },
    "voice": {
        "title": "Generating Voice",
        "description": "Creating natural-sounding dubbed audio",
    },
    "sync": {
        "title": "Syncing Lips",
        "description": "Applying AI lip-sync technology",
    },
    "finalize": {
        "title": "Finalizing Video",
        "description": "Rendering and optimizing final output",
    },
}


def step_index(step: str) -> int:
    """Position of a step in the pipeline; unknown steps count as the first."""
    try:
        return PROCESSING_STEPS.index(step)
    except ValueError:
        return 0


def project_steps(current_step: str, status: str) -> List[dict]:
    """
    Display state of every step for a job at ``current_step`` with ``status``.

    Steps before the current one are completed, later ones pending.  The
    current step is in-progress, or completed / failed when the job is.
    """
    current = step_index(current_step)
    steps = []

    for index, step in enumerate(PROCESSING_STEPS):
        if index < current:
            state = "completed"
        elif index > current:
            state = "pending"
        elif status == JobStatus.FAILED.value:
            state = "failed"
        elif status == JobStatus.COMPLETED.value:
            state = "completed"
        else:
            state = "in-progress"

        info = STEP_INFO.get(step, {"title": step, "description": ""})
        steps.append({
            "id": step,
            "title": info["title"],
            "description": info["description"],
            "status": state,
        })

    return steps


def estimated_seconds_remaining(current_step: str, status: str) -> int:
    if status in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
        return 0
    remaining = len(PROCESSING_STEPS) - step_index(current_step) - 1
    return remaining * SECONDS_PER_STEP_ESTIMATE


@dataclass(frozen=True)
class ProgressHint:
    step: str
    progress: int


def estimate_progress_from_logs(logs: Optional[str]) -> ProgressHint:
    """Guess the pipeline position of a running prediction from its logs."""
    hint = ProgressHint(ProcessingStep.TRANSLATE.value, 30)
    if not logs:
        return hint

    text = logs.lower()
    if "voice" in text:
        hint = ProgressHint(ProcessingStep.VOICE.value, 50)
    if "sync" in text or "lip" in text:
        hint = ProgressHint(ProcessingStep.SYNC.value, 70)
    return hint


def advances(current_step: str, hint: ProgressHint) -> bool:
    """True when applying the hint would move the job forward."""
    return step_index(hint.step) > step_index(current_step)
