"""Task execution engine for PRD-driven CLI agent runs.

The engine walks the user stories of a PRD document in priority order and
hands each one to an external coding agent (claude, gemini, codex).  Each
story gets a bounded number of attempts.  A failed attempt leaves behind an
error entry in the state file and, in learning mode, a git diff plus a short
diagnosis from the same agent that is fed into the next attempt's prompt.

All progress lives in one JSON state file that is rewritten atomically on
every mutation, so an interrupted run can be resumed with ``--resume``:
stories caught in ``running`` are put back to ``pending`` with their attempt
counter intact.
"""
