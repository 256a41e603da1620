"""
Tenant context: хранение текущего tenant'а.
Используется middleware для установки и mixins для чтения.

Использует contextvars (async-safe) вместо threading.local,
поэтому работает и в Celery tasks, и в management-командах.
"""
import contextvars

_current_tenant: contextvars.ContextVar = contextvars.ContextVar(
    'current_tenant', default=None
)


def set_current_tenant(tenant):
    """Установить текущий tenant в context."""
    _current_tenant.set(tenant)


def get_current_tenant():
    """Получить текущий tenant из context. Возвращает None если не установлен."""
    return _current_tenant.get()


def clear_current_tenant():
    """Очистить текущий tenant из context."""
    _current_tenant.set(None)
