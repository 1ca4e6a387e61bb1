"""Timeline planning core: IR, alignment, scheduling, batch planning.

WHY: The scheduling rules are the part of the system that decides
whether a video is in sync. Keeping them free of I/O makes them fully
deterministic and testable in isolation.

HOW: ir.py defines the data structures, aligner.py finds phrases in the
transcript, scheduler.py places segments on the timeline, planner.py cuts
the timeline into render batches. context.py and errors.py hold the
per-request state and the failure types shared by every layer.

RULES:
- IR dataclasses are the contract between stages
- aligner, scheduler, and planner never perform I/O
"""
