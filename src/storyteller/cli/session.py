"""CLI entrypoint that drives one storyteller session from the terminal."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from storyteller.adapters.factories import (
    create_generation_service,
    create_identity_provider,
    create_record_store,
)
from storyteller.adapters.observability import configure_runtime_logging
from storyteller.application.orchestrator import SessionOrchestrator
from storyteller.config import ConfigError, StorytellerConfig, load_config, load_log_settings
from storyteller.domain.models import FEEDBACK_LABELS, SessionView

logger = logging.getLogger(__name__)

FEEDBACK_TITLES = {
    "loved": "Loved it!",
    "too_short": "Too short",
    "more_humor": "More humor",
    "more_adventure": "More adventure",
    "not_my_style": "Not my style",
}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a story and rate it.")
    parser.add_argument("--keywords", default="", help="Keywords or themes for a new story.")
    parser.add_argument(
        "--feedback",
        choices=FEEDBACK_LABELS,
        default=None,
        help="Feedback for the story generated in this run (or --story-id).",
    )
    parser.add_argument("--story-id", default=None, help="Existing story to rate.")
    parser.add_argument("--history", action="store_true", help="Show past stories.")
    parser.add_argument("--sign-out", action="store_true", help="Forget the saved identity.")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Fabricate stories locally instead of calling the generation service.",
    )
    return parser


def render_view(view: SessionView) -> str:
    """Render one session frame as plain text."""
    lines: list[str] = ["AI Story Generator"]
    if view.subject_id:
        lines.append(f"Your User ID: {view.subject_id}")
    elif view.auth_ready:
        lines.append("Not signed in.")
    if view.message is not None:
        prefix = "!" if view.message.is_error else "*"
        lines.append(f"{prefix} {view.message.text}")
    if view.generated_story:
        lines.extend(["", "Your Story", view.generated_story])
        if view.last_record_id is not None:
            choices = ", ".join(
                f"{label} ({FEEDBACK_TITLES[label]})" for label in view.feedback_labels
            )
            lines.append(f"Story id: {view.last_record_id}")
            lines.append(f"Feedback options: {choices}")
    if view.show_history:
        lines.extend(["", "Past Stories"])
        if view.feed_error:
            lines.append(f"(showing last known stories: {view.feed_error})")
        if not view.feed:
            lines.append("No stories yet.")
        for record in view.feed:
            created = record.created_at.isoformat() if record.created_at else "pending"
            lines.append(f"- [{record.record_id}] {created} Keywords: {record.keywords}")
            lines.append(f"  {record.narrative}")
            if record.feedback is not None:
                lines.append(f"  Feedback: {record.feedback.label}")
    return "\n".join(lines)


def _feed_is_current(orchestrator: SessionOrchestrator, rated_record_id: str | None) -> bool:
    feed = orchestrator.feed
    if feed.owner is None or feed.error is not None:
        return True
    if feed.snapshot_count == 0 or orchestrator.view.loading:
        return False
    generated_id = orchestrator.generation.last_record_id
    if generated_id is not None and feed.find(generated_id) is None:
        return False
    if rated_record_id is not None:
        record = feed.find(rated_record_id)
        return record is not None and record.feedback is not None
    return True


async def _settle(
    orchestrator: SessionOrchestrator,
    *,
    rated_record_id: str | None = None,
    timeout_seconds: float = 2.0,
) -> None:
    """Wait until the feed reflects this run's writes before rendering history."""
    settled = asyncio.Event()

    def check(view: SessionView | None = None) -> None:
        if _feed_is_current(orchestrator, rated_record_id):
            settled.set()

    unsubscribe = orchestrator.add_listener(check)
    try:
        check()
        await asyncio.wait_for(settled.wait(), timeout_seconds)
    except TimeoutError:
        logger.warning("cli.history_not_settled timeout=%s", timeout_seconds)
    finally:
        unsubscribe()


async def run_session(config: StorytellerConfig, parsed: argparse.Namespace) -> SessionView:
    orchestrator = SessionOrchestrator(
        identity_provider=create_identity_provider(config),
        generation_service=create_generation_service(config),
        record_store=create_record_store(config),
        settings=config.session_settings(),
    )
    try:
        await orchestrator.start()
        if parsed.keywords:
            await orchestrator.generate(parsed.keywords)
        rated_record_id: str | None = None
        if parsed.feedback:
            target = parsed.story_id or orchestrator.generation.last_record_id
            if await orchestrator.submit_feedback(parsed.feedback, record_id=target):
                rated_record_id = target
        if parsed.history:
            orchestrator.toggle_history()
            await _settle(orchestrator, rated_record_id=rated_record_id)
        view = orchestrator.view
        if parsed.sign_out:
            await orchestrator.sign_out()
            view = orchestrator.view
        return view
    finally:
        orchestrator.close()


def main(argv: Sequence[str] | None = None) -> None:
    """Parse CLI flags, run one session, and print the final view."""
    parser = build_arg_parser()
    parsed = parser.parse_args(argv)
    configure_runtime_logging(load_log_settings())
    try:
        config = load_config()
    except ConfigError as exc:
        parser.error(str(exc))
    if parsed.simulate:
        config = config.model_copy(update={"generation_backend": "simulated"})
    view = asyncio.run(run_session(config, parsed))
    print(render_view(view))
    if view.message is not None and view.message.is_error:
        sys.exit(1)


if __name__ == "__main__":
    main()
