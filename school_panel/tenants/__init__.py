"""
Multi-tenant core: школа = Tenant, все данные расписания привязаны к нему через FK.
"""
