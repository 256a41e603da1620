"""
Вспомогательные функции для работы со временем расписания.

Все функции чистые: без обращений к БД и без побочных эффектов.
Недельное расписание задаётся днём недели (0 = понедельник, как date.weekday())
и временем начала/окончания в формате HH:MM.
"""
import re
from datetime import datetime, time, timedelta
from datetime import timezone as dt_timezone

from django.utils import timezone
from rest_framework.exceptions import ValidationError

TIME_RE = re.compile(r'^([01]?[0-9]|2[0-3]):([0-5][0-9])$')

MINUTES_PER_DAY = 24 * 60

DAY_OF_WEEK_CHOICES = (
    (0, 'Понедельник'),
    (1, 'Вторник'),
    (2, 'Среда'),
    (3, 'Четверг'),
    (4, 'Пятница'),
    (5, 'Суббота'),
    (6, 'Воскресенье'),
)


def parse_time(value):
    """
    Разбор времени в формате HH:MM.

    Args:
        value: строка 'HH:MM' или datetime.time

    Returns:
        datetime.time

    Raises:
        ValidationError: строка не соответствует формату
    """
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or not TIME_RE.match(value.strip()):
        raise ValidationError({'time': f'Некорректное время "{value}", ожидается HH:MM.'})
    hours, minutes = value.strip().split(':')
    return time(int(hours), int(minutes))


def format_time(value):
    return parse_time(value).strftime('%H:%M')


def to_minutes(value):
    t = parse_time(value)
    return t.hour * 60 + t.minute


def from_minutes(minutes):
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ValidationError({'time': 'Урок должен начинаться и заканчиваться в пределах одних суток.'})
    return time(minutes // 60, minutes % 60)


def end_time(start, duration_mins):
    """Время окончания = начало + длительность. Переход через полночь запрещён."""
    if duration_mins is None or duration_mins <= 0:
        raise ValidationError({'duration_mins': 'Длительность должна быть положительной.'})
    return from_minutes(to_minutes(start) + duration_mins)


def minutes_between(start, end):
    return to_minutes(end) - to_minutes(start)


def overlaps(a_start, a_end, b_start, b_end):
    """
    Пересечение полуоткрытых интервалов [a_start, a_end) и [b_start, b_end).

    Интервалы, касающиеся границей (09:00-09:45 и 09:45-10:30), не пересекаются.
    """
    a_start, a_end = to_minutes(a_start), to_minutes(a_end)
    b_start, b_end = to_minutes(b_start), to_minutes(b_end)
    return not (a_end <= b_start or b_end <= a_start)


def day_name(day_of_week):
    if day_of_week not in range(7):
        raise ValidationError({'day_of_week': 'День недели должен быть от 0 до 6.'})
    return DAY_OF_WEEK_CHOICES[day_of_week][1]


def term_week_count(start_date, end_date):
    """Количество учебных недель: неделя 1 начинается в start_date."""
    if end_date < start_date:
        raise ValidationError({'end_date': 'Дата окончания семестра раньше даты начала.'})
    return (end_date - start_date).days // 7 + 1


def date_for_week(term_start, week_number, day_of_week):
    """
    Календарная дата урока для номера недели.

    Неделя N занимает дни [term_start + 7*(N-1), term_start + 7*N). Возвращается
    первый день этого отрезка, совпадающий с day_of_week, т.е. если семестр
    начинается в среду, понедельник недели 1: это понедельник после старта.
    """
    if week_number < 1:
        raise ValidationError({'week_number': 'Номер недели начинается с 1.'})
    day_name(day_of_week)
    week_start = term_start + timedelta(weeks=week_number - 1)
    return week_start + timedelta(days=(day_of_week - week_start.weekday()) % 7)


def week_number_for_date(term_start, target_date):
    if target_date < term_start:
        raise ValidationError({'date': 'Дата раньше начала семестра.'})
    return (target_date - term_start).days // 7 + 1


def local_datetime(day, at, tz):
    """
    Aware datetime для локального времени школы.

    Время на часах фиксировано: урок в 09:00 остаётся в 09:00 и после перехода
    на летнее/зимнее время. Несуществующее время (пропущенный час) трактуется
    по правилам zoneinfo (fold=0).
    """
    return timezone.make_aware(datetime.combine(day, parse_time(at)), tz)


def booking_deadline(slot_start, hours):
    """
    Последний момент для брони/переноса/отмены слота.

    Считается в UTC: ровно `hours` астрономических часов до начала слота.
    Если между дедлайном и слотом был переход часов, локальное время
    дедлайна сдвигается на час относительно времени слота.
    """
    return slot_start.astimezone(dt_timezone.utc) - timedelta(hours=hours)


def alternating_weeks(week_count, first='group'):
    """
    Чередование недель для шаблона ALTERNATING.

    Returns:
        tuple: (group_weeks, individual_weeks)
    """
    odd = list(range(1, week_count + 1, 2))
    even = list(range(2, week_count + 1, 2))
    if first == 'group':
        return odd, even
    return even, odd

