"""Live prop question value type.

Questions arrive as loosely shaped JSON from the host. They are validated
once here and travel through the rest of the code as ``Question`` values.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, replace
from typing import Optional

from betparty.errors import ValidationError

CHOICES = ('Yes', 'No')
_PAYLOAD_FIELDS = {'text', 'tip', 'correct_answer'}


def normalize_choice(value) -> Optional[str]:
    """Map any casing of Yes/No to its canonical spelling, else None."""
    if not isinstance(value, str):
        return None
    wanted = value.strip().lower()
    for choice in CHOICES:
        if choice.lower() == wanted:
            return choice
    return None


def question_key(serialized: str) -> str:
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class Question:
    text: str
    correct_answer: str
    tip: Optional[str] = None
    seq: int = 0

    @classmethod
    def from_payload(cls, payload) -> 'Question':
        if isinstance(payload, Question):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError('Question payload must be an object')
        unknown = set(payload) - _PAYLOAD_FIELDS
        if unknown:
            raise ValidationError(f"Unknown question fields: {', '.join(sorted(unknown))}")
        text = payload.get('text')
        if not isinstance(text, str) or not text.strip():
            raise ValidationError('Question text is required')
        answer = normalize_choice(payload.get('correct_answer'))
        if answer is None:
            raise ValidationError('correct_answer must be Yes or No')
        tip = payload.get('tip')
        if tip is not None and not isinstance(tip, str):
            raise ValidationError('Question tip must be text')
        return cls(text=text.strip(), correct_answer=answer, tip=(tip or '').strip() or None)

    @classmethod
    def deserialize(cls, raw: str) -> 'Question':
        data = json.loads(raw)
        return cls(
            text=data['text'],
            correct_answer=data['correct_answer'],
            tip=data.get('tip'),
            seq=int(data.get('seq') or 0),
        )

    def with_seq(self, seq: int) -> 'Question':
        return replace(self, seq=seq)

    def serialize(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, separators=(',', ':'))

    @property
    def key(self) -> str:
        # Content identity: a republish gets a new seq, hence a new key
        return question_key(self.serialize())

    def is_correct(self, choice) -> bool:
        return normalize_choice(choice) == self.correct_answer

    def to_public_dict(self) -> dict:
        return {
            'key': self.key,
            'text': self.text,
            'tip': self.tip,
            'choices': list(CHOICES),
            'seq': self.seq,
        }
