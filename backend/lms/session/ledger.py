"""In-memory answer ledger for a running test session."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from lms.core.exceptions import AnswerValidationError, UnknownQuestionError
from lms.schemas.attempt import AnswerValue, ChoiceAnswer, LedgerEntryData, TextAnswer
from lms.schemas.test import QuestionRead, QuestionType


class QuestionStatus(str, enum.Enum):
    FLAGGED = "flagged"
    ANSWERED = "answered"
    VISITED = "visited"
    NOT_VISITED = "not-visited"


@dataclass
class _Slot:
    question_type: QuestionType
    option_indices: frozenset[int]
    choice: frozenset[int] = frozenset()
    text: str = ""
    time_taken: float = 0.0
    flagged: bool = False
    visited: bool = False

    @property
    def answered(self) -> bool:
        if self.question_type.is_choice:
            return bool(self.choice)
        return bool(self.text.strip())

    def answer_value(self) -> AnswerValue | None:
        if not self.answered:
            return None
        if self.question_type.is_choice:
            return ChoiceAnswer(selected=sorted(self.choice))
        return TextAnswer(value=self.text)


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable copy of one question's ledger slot."""

    question_id: str
    question_type: QuestionType
    answer: AnswerValue | None
    time_taken: int
    flagged: bool
    visited: bool

    @property
    def status(self) -> QuestionStatus:
        return _status(self.flagged, self.answer is not None, self.visited)


@dataclass(frozen=True)
class LedgerSnapshot:
    """Point-in-time copy of the whole ledger, in question order."""

    entries: Mapping[str, LedgerEntry]

    def __iter__(self):
        return iter(self.entries.values())

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, question_id: str | uuid.UUID) -> LedgerEntry:
        return self.entries[str(question_id)]

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """JSON-ready form, as sent to the auto-save endpoint."""
        return {
            qid: LedgerEntryData(
                answer=e.answer,
                time_taken=e.time_taken,
                flagged=e.flagged,
                visited=e.visited,
            ).model_dump(mode="json")
            for qid, e in self.entries.items()
        }


def _status(flagged: bool, answered: bool, visited: bool) -> QuestionStatus:
    # flagged wins over answered, answered over visited
    if flagged:
        return QuestionStatus.FLAGGED
    if answered:
        return QuestionStatus.ANSWERED
    if visited:
        return QuestionStatus.VISITED
    return QuestionStatus.NOT_VISITED


class AnswerLedger:
    """Question → answer / time / flag / visit state for one session.

    Choice questions take an option index: multiple-choice toggles it in or
    out of the selection, single-choice and true-false replace the
    selection. Numerical and fill-in-blank questions take text.
    """

    def __init__(self, questions: Sequence[QuestionRead]) -> None:
        self._order: list[str] = []
        self._slots: dict[str, _Slot] = {}
        for q in questions:
            qid = str(q.id)
            self._order.append(qid)
            self._slots[qid] = _Slot(
                question_type=QuestionType(q.question_type),
                option_indices=frozenset(o.index for o in q.options),
            )

    # ── lookup ────────────────────────────────────────────────────────────

    def _slot(self, question_id: str | uuid.UUID) -> _Slot:
        try:
            return self._slots[str(question_id)]
        except KeyError:
            raise UnknownQuestionError(str(question_id)) from None

    @property
    def question_ids(self) -> list[str]:
        return list(self._order)

    def __len__(self) -> int:
        return len(self._order)

    def question_type(self, question_id: str | uuid.UUID) -> QuestionType:
        return self._slot(question_id).question_type

    # ── mutation ──────────────────────────────────────────────────────────

    def set_answer(self, question_id: str | uuid.UUID, value: int | str) -> None:
        slot = self._slot(question_id)
        qtype = slot.question_type

        if qtype.is_choice:
            if isinstance(value, bool) or not isinstance(value, int):
                raise AnswerValidationError(
                    f"Question {question_id} ({qtype.value}) takes an option index"
                )
            if value not in slot.option_indices:
                raise AnswerValidationError(f"Question {question_id} has no option {value}")
            if qtype.is_exclusive:
                slot.choice = frozenset({value})
            elif value in slot.choice:
                slot.choice = slot.choice - {value}
            else:
                slot.choice = slot.choice | {value}
            return

        if not isinstance(value, str):
            raise AnswerValidationError(
                f"Question {question_id} ({qtype.value}) takes a text answer"
            )
        slot.text = value

    def clear_answer(self, question_id: str | uuid.UUID) -> None:
        slot = self._slot(question_id)
        slot.choice = frozenset()
        slot.text = ""

    def toggle_flag(self, question_id: str | uuid.UUID) -> bool:
        slot = self._slot(question_id)
        slot.flagged = not slot.flagged
        return slot.flagged

    def mark_visited(self, question_id: str | uuid.UUID) -> None:
        self._slot(question_id).visited = True

    def add_time_spent(self, question_id: str | uuid.UUID, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        self._slot(question_id).time_taken += seconds

    # ── views ─────────────────────────────────────────────────────────────

    def status(self, question_id: str | uuid.UUID) -> QuestionStatus:
        slot = self._slot(question_id)
        return _status(slot.flagged, slot.answered, slot.visited)

    def counts(self) -> dict[QuestionStatus, int]:
        tally = {s: 0 for s in QuestionStatus}
        for qid in self._order:
            tally[self.status(qid)] += 1
        return tally

    def entry(self, question_id: str | uuid.UUID) -> LedgerEntry:
        qid = str(question_id)
        slot = self._slot(qid)
        return LedgerEntry(
            question_id=qid,
            question_type=slot.question_type,
            answer=slot.answer_value(),
            time_taken=int(round(slot.time_taken)),
            flagged=slot.flagged,
            visited=slot.visited,
        )

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            entries=MappingProxyType({qid: self.entry(qid) for qid in self._order})
        )

    def restore(self, data: Mapping[str, LedgerEntryData | Mapping[str, Any]]) -> None:
        """Load a saved snapshot (resume from auto-save).

        Entries for questions outside this ledger are ignored; malformed
        answers raise ``AnswerValidationError``.
        """
        for qid, raw in data.items():
            if qid not in self._slots:
                continue
            item = raw if isinstance(raw, LedgerEntryData) else LedgerEntryData.model_validate(raw)
            slot = self._slots[qid]
            slot.choice = frozenset()
            slot.text = ""
            answer = item.answer
            if isinstance(answer, ChoiceAnswer):
                if not slot.question_type.is_choice:
                    raise AnswerValidationError(f"Question {qid} takes a text answer")
                picks = frozenset(answer.selected)
                if slot.question_type.is_exclusive and len(picks) > 1:
                    raise AnswerValidationError(f"Question {qid} accepts a single option")
                if not picks <= slot.option_indices:
                    raise AnswerValidationError(f"Question {qid} has no such option")
                slot.choice = picks
            elif isinstance(answer, TextAnswer):
                if slot.question_type.is_choice:
                    raise AnswerValidationError(f"Question {qid} takes an option index")
                slot.text = answer.value
            slot.time_taken = float(item.time_taken)
            slot.flagged = item.flagged
            slot.visited = item.visited
