"""
Тип урока как размеченное объединение.

Шаблон гибридного урока есть только у варианта Hybrid, поэтому
"HYBRID без шаблона" или "GROUP с шаблоном" построить нельзя:
build_lesson_kind отвергает такие комбинации до обращения к БД.
"""
from dataclasses import dataclass, field
from typing import Optional, Tuple

from rest_framework.exceptions import ValidationError

from .models import HybridPattern, LessonType, scheduling_setting


@dataclass(frozen=True)
class PatternDraft:
    """Параметры гибридного шаблона до сохранения."""

    pattern_type: str = HybridPattern.PatternType.ALTERNATING
    group_weeks: Tuple[int, ...] = ()
    individual_weeks: Tuple[int, ...] = ()
    individual_slot_duration: int = field(default_factory=lambda: scheduling_setting('DEFAULT_SLOT_DURATION'))
    booking_deadline_hours: int = field(default_factory=lambda: scheduling_setting('DEFAULT_BOOKING_DEADLINE_HOURS'))
    bookings_open: bool = False

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        for key in ('group_weeks', 'individual_weeks'):
            if key in data:
                data[key] = tuple(data[key] or ())
        known = {name for name in cls.__dataclass_fields__}
        unknown = set(data) - known
        if unknown:
            raise ValidationError({'hybrid_pattern': f'Неизвестные поля: {", ".join(sorted(unknown))}'})
        return cls(**data)


@dataclass(frozen=True)
class Individual:
    lesson_type = LessonType.INDIVIDUAL
    max_students: int = 1
    pattern = None


@dataclass(frozen=True)
class Group:
    max_students: int
    lesson_type = LessonType.GROUP
    pattern = None


@dataclass(frozen=True)
class Band:
    max_students: int
    lesson_type = LessonType.BAND
    pattern = None


@dataclass(frozen=True)
class Hybrid:
    pattern: PatternDraft
    max_students: int = 1
    lesson_type = LessonType.HYBRID


def build_lesson_kind(lesson_type, max_students=None, pattern: Optional[dict] = None):
    """
    Собирает вариант типа урока из входных данных.

    Raises:
        ValidationError: шаблон передан не для HYBRID, шаблона нет у HYBRID,
            у индивидуального урока больше одного места
    """
    if lesson_type not in LessonType.values:
        raise ValidationError({'lesson_type': f'Неизвестный тип урока "{lesson_type}".'})
    if max_students is not None and max_students < 1:
        raise ValidationError({'max_students': 'Должно быть хотя бы одно место.'})

    if lesson_type != LessonType.HYBRID and pattern is not None:
        raise ValidationError({'hybrid_pattern': 'Шаблон задаётся только для гибридного урока.'})

    if lesson_type == LessonType.INDIVIDUAL:
        if max_students not in (None, 1):
            raise ValidationError({'max_students': 'Индивидуальный урок рассчитан ровно на одного ученика.'})
        return Individual()
    if lesson_type == LessonType.GROUP:
        return Group(max_students=max_students or 1)
    if lesson_type == LessonType.BAND:
        return Band(max_students=max_students or 1)

    if pattern is None:
        raise ValidationError({'hybrid_pattern': 'Для гибридного урока шаблон обязателен.'})
    if not isinstance(pattern, PatternDraft):
        pattern = PatternDraft.from_dict(pattern)
    return Hybrid(pattern=pattern, max_students=max_students or 1)
