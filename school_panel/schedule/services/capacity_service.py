"""
Вместимость урока: сколько активных записей, сколько мест осталось.

Проверка при записи выполняется под блокировкой строки урока
(select_for_update) в той же транзакции, что и вставка.
"""
from dataclasses import dataclass

from ..exceptions import CapacityExceeded
from ..models import Enrollment, Lesson


@dataclass(frozen=True)
class Capacity:
    current: int
    max: int

    @property
    def available(self):
        return max(0, self.max - self.current)

    def as_dict(self):
        return {'current': self.current, 'max': self.max, 'available': self.available}


class CapacityService:

    @staticmethod
    def check_capacity(lesson) -> Capacity:
        current = Enrollment.objects.active().filter(lesson_id=lesson.pk).count()
        return Capacity(current=current, max=lesson.max_students)

    @staticmethod
    def lock_lesson(lesson) -> Lesson:
        """Блокирует строку урока до конца текущей транзакции."""
        return Lesson.objects.select_for_update().get(pk=lesson.pk)

    @staticmethod
    def ensure_capacity(lesson, seats=1) -> Capacity:
        """
        Raises:
            CapacityExceeded: мест меньше, чем seats
        """
        capacity = CapacityService.check_capacity(lesson)
        if seats > capacity.available:
            raise CapacityExceeded(capacity, requested=seats)
        return capacity
