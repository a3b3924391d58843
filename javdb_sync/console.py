"""
Console prompts and summaries used by main.py
"""

import logging

from .models import JobState

logger = logging.getLogger(__name__)


def ask_yes_no(question, input_fn=input):
    return input_fn(f"{question} (y/n): ").strip().lower() == 'y'


def print_list_changes(summary):
    """Show what a Lists sync is about to add, keep and delete"""
    print("\n" + "-" * 70)
    print("LIST CHANGES:")
    print("-" * 70)
    for label, count, samples in (
        ("[+] New lists", summary.add_count, summary.add_samples),
        ("[~] Lists to refresh", summary.update_count, summary.update_samples),
        ("[-] Lists to delete", summary.delete_count, summary.delete_samples),
    ):
        if not count:
            continue
        print(f"  {label}: {count}")
        for name in samples:
            print(f"      • {name}")
        if count > len(samples):
            print(f"      ... and {count - len(samples)} more")
    print("-" * 70)


def confirm_list_changes(summary, input_fn=input):
    print_list_changes(summary)
    if summary.delete_count:
        print(f"⚠ {summary.delete_count} local list(s) will be deleted and their memberships cleared")
    confirmed = ask_yes_no("Apply these list changes?", input_fn)
    logger.info("List changes %s (+%d ~%d -%d)", "confirmed" if confirmed else "declined",
                summary.add_count, summary.update_count, summary.delete_count)
    return confirmed


def ask_resume(checkpoint, input_fn=input):
    print("\n⚠ Unfinished sync found from a previous run!")
    print(f"  {checkpoint.summary()}\n")
    return ask_yes_no("Resume from checkpoint? ('n' starts over)", input_fn)


def print_result(result):
    if result.state is JobState.COMPLETED:
        prefix = "⚠" if result.has_errors else "✓"
        print(f"\n{prefix} {result.message}")
    elif result.state is JobState.CANCELLED:
        print(f"\n⚠ Sync cancelled: {result.synced} synced so far")
        if result.checkpoint is not None:
            print("→ Progress saved. Choose the same sync again to resume")
    elif result.state is JobState.DECLINED:
        print("\n✓ No changes made")
    else:
        print(f"\n✗ Sync failed: {result.message}")
        if result.checkpoint is not None:
            print("→ Progress saved. Choose the same sync again to resume")
