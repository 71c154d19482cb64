#!/usr/bin/env python3
"""Start or resume an AutoFlow run from the command line."""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from autoflow.config import configure_logging
from autoflow.pipeline import PipelineState
from autoflow.schema import ProgressEvent
from autoflow.workflow import AutoFlowPipeline, ConversationNotFoundError, WorkflowService


def print_progress(event: ProgressEvent) -> None:
    print(f"[{event.percent_complete:3d}%] {event.stage_name}: {event.message}")


def print_outcome(state: PipelineState) -> None:
    print("\n" + "=" * 60)
    print(f"Conversation: {state.conversation_id}")
    print(f"Status: {state.status.value} (stage: {state.current_stage})")
    print("=" * 60)

    if state.conversation_history and state.conversation_history[-1].role == "assistant":
        print(state.conversation_history[-1].content)
    elif state.last_decision is not None:
        print(state.last_decision.explanation)

    if state.change_request_url:
        print(f"\nPull request: {state.change_request_url}")


def main():
    parser = argparse.ArgumentParser(description="Run the AutoFlow workflow")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Start a new conversation")
    start.add_argument("requirement", help="Change request text")
    start.add_argument("--repo", required=True, help="Repository URL or owner/name")
    start.add_argument("--branch", default=None, help="Base branch")
    start.add_argument("--target", default=None, help="Type or method to focus on")
    start.add_argument("--logs", type=Path, default=None, help="File with error logs")

    resume = subparsers.add_parser("resume", help="Reply to a paused conversation")
    resume.add_argument("conversation_id")
    resume.add_argument("reply")

    parser.add_argument("--log-level", default=None, help="Logging level")

    args = parser.parse_args()
    configure_logging(args.log_level)

    service = WorkflowService(AutoFlowPipeline.from_settings(), progress_sink=print_progress)

    try:
        if args.command == "start":
            logs = args.logs.read_text() if args.logs else None
            state = service.start(
                requirement_text=args.requirement,
                repo_ref=args.repo,
                base_branch=args.branch,
                target_symbol=args.target,
                logs=logs,
            )
        else:
            state = service.resume_conversation(args.conversation_id, args.reply)
    except ConversationNotFoundError:
        print(f"Error: Conversation not found: {args.conversation_id}")
        return 1
    except ValueError as e:
        print(f"Error: {e}")
        return 1

    print_outcome(state)
    return 0 if state.status.value != "failed" else 1


if __name__ == "__main__":
    sys.exit(main())
