"""
Confirmation policies for vfio-switch commands.

Every question the toggle and attach flows ask ("Reboot now?", "Shut down
VM now?") goes through a ``confirm(prompt) -> bool`` callable so that
non-interactive callers can answer with a fixed policy.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional

ConfirmFn = Callable[[str], bool]


class InteractiveConfirm:
    """Ask on the terminal. Anything but y/yes is a no, and so is EOF."""

    def __init__(self, input_fn: Optional[Callable[[str], str]] = None):
        self._input = input_fn or input

    def __call__(self, prompt: str) -> bool:
        try:
            reply = self._input(f"{prompt} [y/N] ")
        except EOFError:
            print()
            return False
        return reply.strip().lower() in ("y", "yes")


class AlwaysYes:
    """Answer yes to everything (``--yes``)."""

    def __call__(self, prompt: str) -> bool:
        return True


class AlwaysNo:
    """Answer no to everything."""

    def __call__(self, prompt: str) -> bool:
        return False


class ScriptedConfirm:
    """
    Replay a recorded list of answers.

    Every prompt is appended to ``asked``. Once the script runs out the
    ``default`` answer is used.
    """

    def __init__(self, answers: Iterable[bool], default: bool = False):
        self._answers = list(answers)
        self.default = default
        self.asked: List[str] = []

    def __call__(self, prompt: str) -> bool:
        self.asked.append(prompt)
        if self._answers:
            return self._answers.pop(0)
        return self.default
