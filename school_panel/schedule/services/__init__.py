"""
Бизнес-логика расписания: проверка занятости ресурсов, вместимость,
записи на уроки, переносы и гибридные брони.
"""
